"""Statistics tracking and reporting for the relay hub."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import HubService


class StatsManager:
    """
    Lifetime counters for the hub.

    Tracks counters for:
    - Bytes and packets in/out
    - Errors sent
    - Registrations, disconnections and evictions
    - Messages relayed
    - Ping/pong activity
    - Announces
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "bytes_out": 0,
            "pkts_in": 0,
            "pkts_bad": 0,
            "errors_sent": 0,
            "registrations": 0,
            "disconnections": 0,
            "evictions": 0,
            "msgs_relayed": 0,
            "pings_in": 0,
            "pongs_in": 0,
            "pings_out": 0,
            "pongs_out": 0,
            "announces": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        connections = len(self.hub.connection_snapshot())
        registered = len(self.hub.directory)
        with self._lock:
            c = dict(self._counters)

        lines: list[str] = []
        lines.append(f"rprd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(f"clients_total={connections} clients_registered={registered}")
        lines.append(
            f"features: probe_interval_s={self.hub.config.probe_interval_s} "
            f"max_content_bytes={self.hub.config.max_content_bytes} "
            f"announce_on_start={self.hub.config.announce_on_start} "
            f"announce_period_s={self.hub.config.announce_period_s}"
        )
        lines.append(
            "io: pkts_in={} pkts_bad={} bytes_in={} bytes_out={}".format(
                c.get("pkts_in", 0),
                c.get("pkts_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "events: registrations={} disconnections={} evictions={} msgs_relayed={} errors_sent={}".format(
                c.get("registrations", 0),
                c.get("disconnections", 0),
                c.get("evictions", 0),
                c.get("msgs_relayed", 0),
                c.get("errors_sent", 0),
            )
        )
        lines.append(
            "pings: in={} out={} pongs: in={} out={}".format(
                c.get("pings_in", 0),
                c.get("pings_out", 0),
                c.get("pongs_in", 0),
                c.get("pongs_out", 0),
            )
        )
        return "\n".join(lines)
