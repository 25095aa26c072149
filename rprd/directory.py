from __future__ import annotations

import enum
import logging
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .connection import Connection


class RegisterResult(enum.Enum):
    SUCCESS = "success"
    ALREADY_TAKEN = "already-taken"
    INVALID_NAME = "invalid-name"
    ALREADY_REGISTERED = "already-registered"
    CONNECTION_CLOSED = "connection-closed"


def valid_name(value: Any) -> bool:
    # Any non-empty string is accepted as-is.
    return isinstance(value, str) and value != ""


class Directory:
    """
    The process-wide mapping of registered names to connections.

    This class is responsible for:
    - Enforcing one connection per name and one name per connection
    - Releasing names when connections go away
    - Answering lookups and self-excluded name listings

    Every operation takes ``lock``. Callers that need several operations to
    appear as one (register then snapshot recipients) hold ``lock`` around
    them; it is re-entrant.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("rprd.directory")
        self.lock = threading.RLock()
        self._by_name: dict[str, Connection] = {}

    def __len__(self) -> int:
        with self.lock:
            return len(self._by_name)

    def register(self, name: Any, conn: Connection) -> RegisterResult:
        with self.lock:
            # A close processed before this claim must not leave a name behind.
            if conn.disconnected or not conn.is_open:
                return RegisterResult.CONNECTION_CLOSED

            if not valid_name(name):
                return RegisterResult.INVALID_NAME

            if conn.name is not None:
                if conn.name == name and self._by_name.get(name) is conn:
                    return RegisterResult.SUCCESS
                return RegisterResult.ALREADY_REGISTERED

            holder = self._by_name.get(name)
            if holder is not None and holder is not conn:
                if holder.is_open:
                    return RegisterResult.ALREADY_TAKEN
                # The transport already dropped the holder but its close has
                # not been processed yet.
                self.log.info(
                    "Reclaiming name=%r from closed conn=%s", name, holder.conn_id
                )
                holder.name = None

            self._by_name[name] = conn
            conn.name = name
            return RegisterResult.SUCCESS

    def unregister(self, conn: Connection) -> str | None:
        with self.lock:
            name = conn.name
            if name is None:
                return None
            conn.name = None
            if self._by_name.get(name) is conn:
                del self._by_name[name]
            return name

    def lookup(self, name: Any) -> Connection | None:
        if not isinstance(name, str):
            return None
        with self.lock:
            return self._by_name.get(name)

    def names_excluding(self, exclude: str | None) -> list[str]:
        with self.lock:
            return [n for n in self._by_name if n != exclude]

    def registered(self) -> list[tuple[str, Connection]]:
        """Snapshot of (name, connection) pairs in insertion order."""
        with self.lock:
            return list(self._by_name.items())

    def clear(self) -> list[Connection]:
        with self.lock:
            conns = list(self._by_name.values())
            for conn in conns:
                conn.name = None
            self._by_name.clear()
            return conns
