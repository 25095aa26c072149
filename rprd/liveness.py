from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .connection import Connection
    from .service import HubService


class LivenessMonitor:
    """
    Periodic two-strike sweep over every open connection.

    A connection whose ``alive`` flag is still clear when the sweep comes
    round has not answered the previous probe and is evicted. Every other
    connection has its flag cleared and is probed again. Answering a probe
    (PONG) sets the flag, so a connection is only evicted after missing one
    full interval.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rprd.liveness")
        self._thread: threading.Thread | None = None

    @property
    def interval_s(self) -> float:
        return float(self.hub.config.probe_interval_s)

    def start(self) -> None:
        if self.interval_s <= 0:
            self.log.info("Liveness probing disabled")
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._loop, name="rprd-liveness", daemon=True
        )
        self._thread.start()

    def _loop(self) -> None:
        while not self.hub._shutdown.wait(self.interval_s):
            try:
                self.sweep()
            except Exception:
                self.log.exception("Liveness sweep failed")

    def sweep(self) -> list[Connection]:
        """Run one tick; returns the connections that were evicted."""
        evicted: list[Connection] = []
        probed = 0

        for conn in self.hub.connection_snapshot():
            try:
                if not conn.alive:
                    evicted.append(conn)
                    self.hub.evict(conn)
                    continue

                conn.alive = False
                self.hub.stats.inc("pings_out")
                if conn.probe():
                    probed += 1
                else:
                    # Left suspect; evicted next tick unless it answers.
                    self.log.warning(
                        "Probe not sent conn=%s name=%r", conn.conn_id, conn.name
                    )
            except Exception:
                self.log.exception(
                    "Liveness check failed conn=%s name=%r", conn.conn_id, conn.name
                )

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Sweep probed=%s evicted=%s", probed, len(evicted))
        return evicted
