from __future__ import annotations

import logging

import RNS

from .codec import encode
from .constants import T_PING
from .envelope import make_envelope, now_ms

log = logging.getLogger("rprd.connection")


class Connection:
    """
    One client session as seen by the relay core.

    Holds the two pieces of per-session state the core needs:
    - ``name``: the registered display name, or None until registration
    - ``alive``: liveness flag, cleared before each probe and set again
      when the client answers it
    - ``disconnected``: set once the hub has processed its departure; a
      disconnected handle can never take a name

    Subclasses provide the transport: ``is_open``, ``_transmit``, ``close``
    and ``probe``.
    """

    def __init__(self, conn_id: str) -> None:
        self.conn_id = conn_id
        self.name: str | None = None
        self.alive = True
        self.disconnected = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.conn_id} name={self.name!r}>"

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    def _transmit(self, payload: bytes) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def probe(self) -> bool:
        raise NotImplementedError

    def fits(self, payload: bytes) -> bool:
        return True

    def mark_alive(self) -> None:
        self.alive = True

    def send(self, payload: bytes) -> bool:
        """Send a payload; returns False if it was dropped or failed."""
        if not self.is_open:
            log.debug("Dropping send to closed conn=%s bytes=%s", self.conn_id, len(payload))
            return False
        try:
            self._transmit(payload)
        except OSError as e:
            log.warning(
                "Send failed conn=%s bytes=%s err=%s", self.conn_id, len(payload), e
            )
            return False
        except Exception:
            log.debug(
                "Send failed conn=%s bytes=%s",
                self.conn_id,
                len(payload),
                exc_info=True,
            )
            return False
        return True


class LinkConnection(Connection):
    """Connection backed by an established ``RNS.Link``."""

    def __init__(self, link: RNS.Link, *, src: bytes) -> None:
        super().__init__(self._fmt_link_id(link))
        self.link = link
        self.src = src

    @staticmethod
    def _fmt_link_id(link: RNS.Link) -> str:
        lid = getattr(link, "link_id", None)
        if isinstance(lid, (bytes, bytearray)):
            return bytes(lid).hex()
        h = getattr(link, "hash", None)
        if isinstance(h, (bytes, bytearray)):
            return bytes(h).hex()
        return "-"

    @property
    def is_open(self) -> bool:
        return getattr(self.link, "status", None) == RNS.Link.ACTIVE

    def _transmit(self, payload: bytes) -> None:
        RNS.Packet(self.link, payload).send()

    def close(self) -> None:
        try:
            self.link.teardown()
        except Exception:
            log.debug("Teardown failed conn=%s", self.conn_id, exc_info=True)

    def probe(self) -> bool:
        ping = make_envelope(T_PING, src=self.src, body=now_ms())
        return self.send(encode(ping))

    def fits(self, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if getattr(self.link, "MDU", None) is not None:
                return len(payload) <= self.link.MDU
            pkt = RNS.Packet(self.link, payload)
            pkt.pack()
            return True
        except Exception:
            return False
