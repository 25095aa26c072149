from __future__ import annotations

import logging
import os
import signal
import threading
import time

import RNS

from .codec import encode
from .config import HubRuntimeConfig
from .connection import Connection, LinkConnection
from .directory import Directory
from .handlers import (
    DirectoryQueryHandler,
    DisconnectionHandler,
    RegistrationHandler,
    RelayHandler,
)
from .liveness import LivenessMonitor
from .notifications import Outgoing, error
from .router import MessageRouter
from .stats import StatsManager
from .util import expand_path, fmt_hash


class HubService:
    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("rprd.hub")

        self._shutdown = threading.Event()

        # Every accepted session, registered or not. The liveness sweep walks
        # this; name state lives in the directory.
        self._conn_lock = threading.Lock()
        self._connections: dict[str, Connection] = {}

        self.directory = Directory()
        self.stats = StatsManager(self)

        self.registration = RegistrationHandler(self)
        self.query = DirectoryQueryHandler(self)
        self.relay = RelayHandler(self)
        self.disconnection = DisconnectionHandler(self)

        self.router = MessageRouter(self)
        self.liveness = LivenessMonitor(self)

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

        self._announce_thread: threading.Thread | None = None

    @property
    def src(self) -> bytes:
        """Source hash stamped on hub-originated envelopes."""
        if self.identity is None:
            return b""
        return bytes(self.identity.hash)

    # Connection bookkeeping

    def attach(self, conn: Connection) -> None:
        with self._conn_lock:
            self._connections[conn.conn_id] = conn

    def detach(self, conn: Connection) -> bool:
        with self._conn_lock:
            return self._connections.pop(conn.conn_id, None) is not None

    def connection_snapshot(self) -> list[Connection]:
        with self._conn_lock:
            return list(self._connections.values())

    def deliver(self, conn: Connection, data: bytes) -> None:
        """Route one inbound packet and send whatever it produced."""
        outgoing = Outgoing(self.stats)
        self.router.route_packet(conn, data, outgoing)
        outgoing.flush()

    def disconnect(self, conn: Connection) -> str | None:
        """Forget a connection; safe to call more than once."""
        self.detach(conn)
        outgoing = Outgoing(self.stats)
        name = self.disconnection.handle(conn, outgoing)
        outgoing.flush()
        return name

    def evict(self, conn: Connection) -> None:
        self.stats.inc("evictions")
        self.log.info(
            "Evicting unresponsive conn=%s name=%r", conn.conn_id, conn.name
        )
        conn.close()
        self.disconnect(conn)

    def emit_error(self, outgoing: Outgoing, conn: Connection, text: str) -> None:
        self.stats.inc("errors_sent")
        outgoing.queue_env(conn, error(self.src, text))

    # Reticulum plumbing

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        self.stats.set_start_time()
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="rprd-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.liveness.start()

        self.log.info(
            "Hub running dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
        )
        self.log.info(
            "Policy probe_interval_s=%s max_content_bytes=%s",
            self.config.probe_interval_s,
            self.config.max_content_bytes,
        )

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "rpr", "v": 1, "hub": self.config.hub_name})
            )
            self.stats.inc("announces")
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        period = float(self.config.announce_period_s)
        while not self._shutdown.wait(period):
            self._announce_once()

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        summary = self.stats.format_stats()

        with self._conn_lock:
            conns = list(self._connections.values())
            self._connections.clear()
        self.directory.clear()

        for conn in conns:
            conn.close()

        self.log.info("Hub stopped\n%s", summary)

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def _on_link(self, link: RNS.Link) -> None:
        conn = LinkConnection(link, src=self.src)
        self.attach(conn)

        link.set_packet_callback(lambda data, pkt: self._on_packet(conn, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(conn))

        self.log.info("Link established conn=%s", conn.conn_id)

    def _on_packet(self, conn: Connection, data: bytes) -> None:
        # Runs on RNS's callback thread; nothing may escape into it.
        try:
            self.deliver(conn, data)
        except Exception:
            self.log.exception("Packet handling failed conn=%s", conn.conn_id)

    def _on_close(self, conn: Connection) -> None:
        try:
            name = self.disconnect(conn)
        except Exception:
            self.log.exception("Close handling failed conn=%s", conn.conn_id)
            return

        peer = None
        if isinstance(conn, LinkConnection):
            ident = None
            try:
                ident = conn.link.get_remote_identity()
            except Exception:
                self.log.debug(
                    "Remote identity unavailable conn=%s", conn.conn_id, exc_info=True
                )
            peer = ident.hash if ident is not None else None

        self.log.info(
            "Link closed conn=%s name=%r peer=%s",
            conn.conn_id,
            name,
            fmt_hash(peer),
        )
