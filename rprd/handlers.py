from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .codec import encode
from .constants import PRESENCE_CONNECTED, PRESENCE_DISCONNECTED
from .directory import RegisterResult
from .errors import (
    InvalidInput,
    NameConflict,
    NotRegistered,
    RecipientUnavailable,
    SelfTarget,
)
from .notifications import (
    Outgoing,
    delivered_message,
    peer_list,
    presence_update,
    registration_result,
)

if TYPE_CHECKING:
    from .connection import Connection
    from .service import HubService

log = logging.getLogger("rprd.handlers")


def broadcast_presence(hub: HubService, outgoing: Outgoing, name: str, event: str) -> None:
    """Queue a presence update for every open registered connection."""
    payload = encode(presence_update(hub.src, name, event))
    with hub.directory.lock:
        for _, conn in hub.directory.registered():
            if conn.is_open:
                outgoing.queue(conn, payload)


class RegistrationHandler:
    """Claims a name for a connection and announces it to everyone."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

    def handle(self, conn: Connection, name: Any, outgoing: Outgoing) -> None:
        directory = self.hub.directory
        with directory.lock:
            previous = conn.name
            holder = directory.lookup(name)
            result = directory.register(name, conn)

            if result is RegisterResult.CONNECTION_CLOSED:
                log.debug("Ignoring register from closed conn=%s", conn.conn_id)
                return
            if result is RegisterResult.INVALID_NAME:
                raise InvalidInput("invalid name")
            if result is RegisterResult.ALREADY_TAKEN:
                log.info("Name taken name=%r conn=%s", name, conn.conn_id)
                raise NameConflict("name already taken")
            if result is RegisterResult.ALREADY_REGISTERED:
                raise NameConflict(f"already registered as {previous}")

            outgoing.queue_env(conn, registration_result(self.hub.src, name))
            if previous == name:
                return

            self.hub.stats.inc("registrations")
            log.info(
                "Registered name=%r conn=%s online=%s",
                name,
                conn.conn_id,
                len(directory),
            )
            self.hub.query.broadcast(outgoing)
            if holder is not None and holder is not conn:
                # The name was taken over from a closed holder whose own close
                # will now be silent.
                broadcast_presence(self.hub, outgoing, name, PRESENCE_DISCONNECTED)
            broadcast_presence(self.hub, outgoing, name, PRESENCE_CONNECTED)


class DirectoryQueryHandler:
    """Answers "who else is online", for one connection or for all of them."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

    def handle(self, conn: Connection, outgoing: Outgoing) -> None:
        with self.hub.directory.lock:
            if conn.name is None:
                raise NotRegistered()
            names = self.hub.directory.names_excluding(conn.name)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Peer list name=%r peers=%s", conn.name, names)
        outgoing.queue_env(conn, peer_list(self.hub.src, names))

    def broadcast(self, outgoing: Outgoing) -> None:
        # Each connection gets its own list without itself in it.
        with self.hub.directory.lock:
            entries = self.hub.directory.registered()
            names = [name for name, _ in entries]
            for name, conn in entries:
                if not conn.is_open:
                    continue
                others = [n for n in names if n != name]
                outgoing.queue_env(conn, peer_list(self.hub.src, others))


class RelayHandler:
    """Forwards a direct message and echoes it back to the sender."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

    def handle(
        self, conn: Connection, to: Any, content: Any, outgoing: Outgoing
    ) -> None:
        with self.hub.directory.lock:
            sender = conn.name
            if sender is None:
                raise NotRegistered()
            if to == sender:
                raise SelfTarget()
            target = self.hub.directory.lookup(to)
            if target is None or not target.is_open:
                raise RecipientUnavailable()

        if not isinstance(content, str):
            raise InvalidInput("invalid message content")

        limit = int(self.hub.config.max_content_bytes)
        if limit > 0 and len(content.encode("utf-8")) > limit:
            raise InvalidInput("message too large")

        payload = encode(delivered_message(self.hub.src, sender, to, content))
        if not target.fits(payload) or not conn.fits(payload):
            raise InvalidInput("message too large")

        outgoing.queue(target, payload)
        outgoing.queue(conn, payload)
        self.hub.stats.inc("msgs_relayed")

        if log.isEnabledFor(logging.DEBUG):
            log.debug(
                "Relayed from=%r to=%r chars=%s bytes=%s",
                sender,
                to,
                len(content),
                len(payload),
            )


class DisconnectionHandler:
    """Releases a departing connection's name and tells the others."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

    def handle(self, conn: Connection, outgoing: Outgoing) -> str | None:
        with self.hub.directory.lock:
            conn.disconnected = True
            name = self.hub.directory.unregister(conn)
            if name is None:
                return None

            self.hub.stats.inc("disconnections")
            log.info(
                "Unregistered name=%r conn=%s online=%s",
                name,
                conn.conn_id,
                len(self.hub.directory),
            )
            self.hub.query.broadcast(outgoing)
            broadcast_presence(self.hub, outgoing, name, PRESENCE_DISCONNECTED)
        return name
