from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import decode
from .commands import Command, ListPeers, Register, Send, parse_command
from .constants import K_BODY, K_T, T_PING, T_PONG
from .envelope import make_envelope, validate_envelope
from .errors import DecodeFailure, RelayError, UnrecognizedCommand
from .notifications import Outgoing

if TYPE_CHECKING:
    from .connection import Connection
    from .service import HubService


class MessageRouter:
    """
    Command dispatcher for the relay hub.

    This class is responsible for:
    - Decoding and validating incoming packets
    - Consuming PING/PONG liveness traffic before command dispatch
    - Routing REGISTER, LIST_PEERS and SEND to their handlers
    - Turning every RelayError into an ERROR notification for the sender
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rprd.router")

    def route_packet(self, conn: Connection, data: bytes, outgoing: Outgoing) -> None:
        """Main entry point for one inbound packet."""
        self.hub.stats.inc("pkts_in")
        self.hub.stats.inc("bytes_in", len(data))

        try:
            env = self._decode(data)
        except DecodeFailure as e:
            self.hub.stats.inc("pkts_bad")
            self.log.debug(
                "Bad packet conn=%s bytes=%s err=%s", conn.conn_id, len(data), e
            )
            self.hub.emit_error(outgoing, conn, e.text)
            return

        t = env.get(K_T)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn=%s name=%r t=%s bytes=%s", conn.conn_id, conn.name, t, len(data)
            )

        if t == T_PONG:
            self.hub.stats.inc("pongs_in")
            conn.mark_alive()
            return
        if t == T_PING:
            self._handle_ping(conn, env, outgoing)
            return

        self.dispatch(conn, parse_command(env), outgoing)

    def dispatch(self, conn: Connection, command: Command, outgoing: Outgoing) -> None:
        try:
            if isinstance(command, Register):
                self.hub.registration.handle(conn, command.name, outgoing)
            elif isinstance(command, ListPeers):
                self.hub.query.handle(conn, outgoing)
            elif isinstance(command, Send):
                self.hub.relay.handle(conn, command.to, command.content, outgoing)
            else:
                raise UnrecognizedCommand()
        except RelayError as e:
            self.log.debug(
                "Rejected %s conn=%s name=%r: %s",
                type(command).__name__,
                conn.conn_id,
                conn.name,
                e.text,
            )
            self.hub.emit_error(outgoing, conn, e.text)
        except Exception:
            self.log.exception(
                "Handler failed conn=%s command=%r", conn.conn_id, command
            )
            self.hub.emit_error(outgoing, conn, "internal error")

    def _decode(self, data: bytes) -> dict:
        env = decode(data)
        try:
            validate_envelope(env)
        except (TypeError, ValueError) as e:
            raise DecodeFailure(f"bad message: {e}") from e
        return env

    def _handle_ping(self, conn: Connection, env: dict, outgoing: Outgoing) -> None:
        self.hub.stats.inc("pings_in")
        pong = make_envelope(T_PONG, src=self.hub.src, body=env.get(K_BODY))
        self.hub.stats.inc("pongs_out")
        outgoing.queue_env(conn, pong)
