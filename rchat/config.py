from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import DEFAULT_ROOM, NICK_MAX_CHARS


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    room_registry_path: str | None = None
    history_db_path: str | None = None
    nick_map_path: str | None = None
    dest_name: str = "rchat.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "rchat"
    greeting: str | None = None
    admin_nick: str = "admin"
    default_room: str = DEFAULT_ROOM
    initial_rooms: tuple[str, ...] = (DEFAULT_ROOM,)
    history_len: int = 10
    nick_max_chars: int = NICK_MAX_CHARS
    max_room_name_len: int = 64
    max_msg_body_bytes: int = 350
    shutdown_grace_s: float = 10.0
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


_LOGGING_KEYS = {
    "level": "log_level",
    "rns_level": "log_rns_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

# Keys where an empty string in the file means "unset".
_EMPTY_IS_NONE = (
    "configdir",
    "greeting",
    "history_db_path",
    "nick_map_path",
    "log_file",
    "log_datefmt",
)


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(cfg: HubRuntimeConfig, data: dict[str, Any]) -> HubRuntimeConfig:
    """Overlay a parsed TOML document onto ``cfg``.

    Keys may live at the top level or under ``[hub]``; ``[logging]`` keys are
    mapped onto the ``log_*`` fields. Unknown keys are ignored.
    """
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped = {
            field: log_table[key]
            for key, field in _LOGGING_KEYS.items()
            if key in log_table
        }
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    if "initial_rooms" in updates and isinstance(updates["initial_rooms"], list):
        updates["initial_rooms"] = tuple(str(x) for x in updates["initial_rooms"])

    for key in _EMPTY_IS_NONE:
        if key in updates and updates[key] == "":
            updates[key] = None

    for key in ("history_len", "nick_max_chars", "max_room_name_len", "max_msg_body_bytes"):
        if key in updates:
            try:
                updates[key] = int(updates[key])
            except (TypeError, ValueError):
                raise ValueError(f"{key} must be an integer") from None

    if updates.get("history_len", 0) < 0:
        raise ValueError("history_len must not be negative")

    return replace(cfg, **updates) if updates else cfg


def load_config_file(cfg: HubRuntimeConfig, path: str) -> HubRuntimeConfig:
    return apply_config_data(cfg, load_toml(path))
