"""Outbound notification envelopes and the deferred send queue."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .codec import encode
from .constants import (
    B_MSG_CONTENT,
    B_MSG_FROM,
    B_MSG_TO,
    B_MSG_TS,
    B_PEER_NAME,
    B_PRESENCE_EVENT,
    B_PRESENCE_NAME,
    B_PRESENCE_TEXT,
    B_PRESENCE_TS,
    B_REGISTERED_NAME,
    B_REGISTERED_STATUS,
    PRESENCE_CONNECTED,
    REGISTER_STATUS_SUCCESS,
    T_ERROR,
    T_MESSAGE,
    T_PEERS,
    T_PRESENCE,
    T_REGISTERED,
)
from .envelope import make_envelope, now_ms

if TYPE_CHECKING:
    from .connection import Connection
    from .stats import StatsManager

log = logging.getLogger("rprd.notifications")


def registration_result(src: bytes, name: str) -> dict:
    body = {B_REGISTERED_STATUS: REGISTER_STATUS_SUCCESS, B_REGISTERED_NAME: name}
    return make_envelope(T_REGISTERED, src=src, body=body)


def peer_list(src: bytes, names: Iterable[str]) -> dict:
    return make_envelope(T_PEERS, src=src, body=[{B_PEER_NAME: n} for n in names])


def delivered_message(
    src: bytes, sender: str, to: str, content: str, *, ts: int | None = None
) -> dict:
    # One timestamp for the envelope and the record so both copies agree.
    ts = ts or now_ms()
    body = {B_MSG_FROM: sender, B_MSG_TO: to, B_MSG_CONTENT: content, B_MSG_TS: ts}
    return make_envelope(T_MESSAGE, src=src, body=body, ts=ts)


def presence_update(src: bytes, name: str, event: str) -> dict:
    ts = now_ms()
    verb = "has connected" if event == PRESENCE_CONNECTED else "has disconnected"
    body = {
        B_PRESENCE_TEXT: f"{name} {verb}",
        B_PRESENCE_NAME: name,
        B_PRESENCE_EVENT: event,
        B_PRESENCE_TS: ts,
    }
    return make_envelope(T_PRESENCE, src=src, body=body, ts=ts)


def error(src: bytes, text: str) -> dict:
    return make_envelope(T_ERROR, src=src, body=text)


class Outgoing:
    """
    Payloads queued while the directory lock is held.

    Handlers only append here; ``flush`` performs the actual sends once the
    caller has released the lock, so a slow transport never stalls other
    connections.
    """

    def __init__(self, stats: StatsManager | None = None) -> None:
        self.stats = stats
        self._items: list[tuple[Connection, bytes]] = []

    def __len__(self) -> int:
        return len(self._items)

    def queue(self, conn: Connection, payload: bytes) -> None:
        self._items.append((conn, payload))

    def queue_env(self, conn: Connection, env: dict) -> None:
        self.queue(conn, encode(env))

    def flush(self) -> int:
        items, self._items = self._items, []
        sent = 0
        for conn, payload in items:
            if conn.send(payload):
                sent += 1
                if self.stats is not None:
                    self.stats.inc("bytes_out", len(payload))
        if log.isEnabledFor(logging.DEBUG) and items:
            log.debug("Flushed %d/%d payload(s)", sent, len(items))
        return sent
