from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import HubRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import default_config_path, default_identity_path, ensure_private_dir
from .service import HubService


def _write_default_config(config_path: str, identity_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# rprd configuration (TOML)
#
# This file was created on first run.
# Edit it, then start rprd again.

[hub]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where rprd stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Destination name to host the hub on.
dest_name = "rprd.hub"

# Announcing (Reticulum destination announces)
#
# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

# Hub name advertised in announces.
hub_name = "rprd"

# Liveness probing.
# Every probe_interval_s seconds each client is sent a PING. A client that has
# not answered the previous PING with a PONG by the next round is disconnected.
# 0 disables probing.
probe_interval_s = 30.0

# Largest accepted direct message content in UTF-8 bytes (0 disables).
# Messages must also fit the link MTU after envelope overhead; 350 bytes is
# a safe choice for the default Reticulum MTU of 500.
max_content_bytes = 350

[logging]

# Log level for rprd itself.
level = "INFO"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except Exception:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rprd", description="Run a presence and direct-message relay hub"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to hub identity file (created on first run)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: rprd.hub)"
    )

    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )
    p.add_argument("--hub-name", default=None, help="Hub name in announces")

    p.add_argument(
        "--probe-interval",
        type=float,
        default=None,
        help="Liveness PING interval seconds (0 disables)",
    )
    p.add_argument(
        "--max-content-bytes",
        type=int,
        default=None,
        help="Maximum direct message content size in UTF-8 bytes",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> HubRuntimeConfig:
    cfg = HubRuntimeConfig(
        config_path=str(args.config),
        configdir=args.configdir,
        identity_path=str(args.identity),
    )

    if args.config and os.path.exists(args.config):
        cfg = apply_config_data(cfg, load_toml(str(args.config)))

    # The command line wins over the file.
    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)
    cfg = replace(cfg, identity_path=str(args.identity))

    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)
    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))
    if args.hub_name is not None:
        cfg = replace(cfg, hub_name=args.hub_name)
    if args.probe_interval is not None:
        cfg = replace(cfg, probe_interval_s=float(args.probe_interval))
    if args.max_content_bytes is not None:
        cfg = replace(cfg, max_content_bytes=int(args.max_content_bytes))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)

    if _ensure_first_run_files(config_path, identity_path):
        print(
            "Created default rprd files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run rprd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)
    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
