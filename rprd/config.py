from __future__ import annotations

from dataclasses import asdict, dataclass, replace


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "rprd.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "rprd"
    probe_interval_s: float = 30.0
    max_content_bytes: int = 350
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    """Overlay a parsed TOML document onto ``base``.

    Keys may sit at the top level or in a ``[hub]`` table; ``[logging]`` keys
    map onto the ``log_*`` fields. Unknown keys are ignored.
    """
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "rns_level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    if "announce" in data and "announce_on_start" not in updates:
        updates["announce_on_start"] = bool(data["announce"])
    for key in ("configdir", "log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None
    for key in ("announce_period_s", "probe_interval_s"):
        if key in updates:
            updates[key] = float(updates[key])
    if "max_content_bytes" in updates:
        updates["max_content_bytes"] = int(updates["max_content_bytes"])

    return replace(base, **updates) if updates else base
