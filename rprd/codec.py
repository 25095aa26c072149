from __future__ import annotations

import cbor2

from .errors import DecodeFailure


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(b: bytes):
    try:
        return cbor2.loads(b)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise DecodeFailure(f"bad message: {e}") from e
