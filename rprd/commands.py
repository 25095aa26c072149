"""Typed commands decoded from inbound envelopes.

Field values are carried through unvalidated; the handlers own validation so
that "not registered" is reported before any field-level complaint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .constants import (
    B_REGISTER_NAME,
    B_SEND_CONTENT,
    B_SEND_TO,
    K_BODY,
    K_T,
    T_LIST_PEERS,
    T_REGISTER,
    T_SEND,
)


@dataclass(frozen=True)
class Register:
    name: Any


@dataclass(frozen=True)
class ListPeers:
    pass


@dataclass(frozen=True)
class Send:
    to: Any
    content: Any


@dataclass(frozen=True)
class Unrecognized:
    kind: Any


Command = Register | ListPeers | Send | Unrecognized


def _field(body: Any, key: int) -> Any:
    if not isinstance(body, dict):
        return None
    return body.get(key)


def parse_command(env: dict) -> Command:
    """Map a validated envelope onto a command object."""
    t = env.get(K_T)
    body = env.get(K_BODY)

    if t == T_REGISTER:
        return Register(name=_field(body, B_REGISTER_NAME))
    if t == T_LIST_PEERS:
        return ListPeers()
    if t == T_SEND:
        return Send(to=_field(body, B_SEND_TO), content=_field(body, B_SEND_CONTENT))
    return Unrecognized(kind=t)
