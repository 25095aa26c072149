from __future__ import annotations

import pytest

from rprd.codec import decode, encode
from rprd.config import HubRuntimeConfig
from rprd.connection import Connection
from rprd.constants import (
    B_REGISTER_NAME,
    B_SEND_CONTENT,
    B_SEND_TO,
    K_T,
    T_LIST_PEERS,
    T_REGISTER,
    T_SEND,
)
from rprd.envelope import make_envelope
from rprd.service import HubService

CLIENT = b"client"


class FakeConnection(Connection):
    """In-memory connection that records everything sent to it."""

    def __init__(self, conn_id: str, *, mdu: int | None = None) -> None:
        super().__init__(conn_id)
        self.open = True
        self.closed = False
        self.mdu = mdu
        self.sent: list[bytes] = []
        self.probes = 0
        self.fail_probe = False

    @property
    def is_open(self) -> bool:
        return self.open

    def _transmit(self, payload: bytes) -> None:
        self.sent.append(payload)

    def close(self) -> None:
        self.open = False
        self.closed = True

    def probe(self) -> bool:
        self.probes += 1
        return not self.fail_probe

    def fits(self, payload: bytes) -> bool:
        return self.mdu is None or len(payload) <= self.mdu

    def received(self, msg_type: int | None = None) -> list[dict]:
        envs = [decode(p) for p in self.sent]
        if msg_type is None:
            return envs
        return [e for e in envs if e[K_T] == msg_type]

    def clear(self) -> None:
        self.sent.clear()


def register_packet(name) -> bytes:
    return encode(make_envelope(T_REGISTER, src=CLIENT, body={B_REGISTER_NAME: name}))


def list_peers_packet() -> bytes:
    return encode(make_envelope(T_LIST_PEERS, src=CLIENT))


def send_packet(to, content) -> bytes:
    body = {B_SEND_TO: to, B_SEND_CONTENT: content}
    return encode(make_envelope(T_SEND, src=CLIENT, body=body))


@pytest.fixture
def hub() -> HubService:
    return HubService(HubRuntimeConfig(probe_interval_s=30.0, max_content_bytes=350))


@pytest.fixture
def connect(hub: HubService):
    """Attach a new fake connection, optionally registering a name."""

    def _connect(conn_id: str, name: str | None = None) -> FakeConnection:
        conn = FakeConnection(conn_id)
        hub.attach(conn)
        if name is not None:
            hub.deliver(conn, register_packet(name))
            assert conn.name == name
        return conn

    return _connect
