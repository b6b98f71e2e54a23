from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import HubRuntimeConfig, load_config_file
from .logging_config import configure_logging
from .paths import HubPaths, ensure_private_dir
from .service import HubService


def _write_default_config(
    config_path: str,
    identity_path: str,
    room_registry_path: str,
    history_db_path: str,
    nick_map_path: str,
) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# rchat configuration (TOML)
#
# This file was created on first run.
# Edit it, then start rchatd again.

[hub]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where rchatd stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Room list, maintained by rchatd when the admin creates or deletes rooms.
room_registry_path = {room_registry_path!r}

# SQLite message history. Leave empty to keep history in memory only.
history_db_path = {history_db_path!r}

# Reserved nicknames and their passwords, as a [nicks] table.
# Leave empty to disable reservations.
nick_map_path = ""
# nick_map_path = {nick_map_path!r}

# Destination name to host the hub on.
dest_name = "rchat.hub"

# Announcing (Reticulum destination announces)
#
# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

# Hub identity fields.
hub_name = "rchat"

# Sent as a system message to every new connection, after the history replay.
greeting = ""

# Nick allowed to use /sudo. Reserve it in the nick map with a password.
admin_nick = "admin"

# Rooms.
default_room = "general"
initial_rooms = ["general"]

# Messages kept per room and replayed on join.
history_len = 10

# Limits.
nick_max_chars = 32
max_room_name_len = 64
max_msg_body_bytes = 350

# Seconds to let outboxes drain on shutdown before closing links.
shutdown_grace_s = 10.0

[logging]

# Log level for rchatd itself.
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


_ROOM_REGISTRY_HEADER = """# rchat room registry (TOML)
#
# Rooms created with /sudo create. Maintained by rchatd while it runs.
#
#   [rooms."lobby"]
#   created_ts = 1730000000.0

[rooms]
"""


def _ensure_first_run_files(
    config_path: str,
    identity_path: str,
    room_registry_path: str,
    history_db_path: str,
    nick_map_path: str,
) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(
            config_path, identity_path, room_registry_path, history_db_path, nick_map_path
        )
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except OSError:
            pass
        created_any = True

    if room_registry_path and not os.path.exists(room_registry_path):
        storage_dir = os.path.dirname(room_registry_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        with open(room_registry_path, "w", encoding="utf-8") as f:
            f.write(_ROOM_REGISTRY_HEADER)
        try:
            os.chmod(room_registry_path, 0o600)
        except OSError:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rchatd", description="Run an rchat hub daemon")
    paths = HubPaths.from_env()

    p.add_argument(
        "--config",
        default=str(paths.config),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")

    p.add_argument(
        "--identity",
        default=str(paths.identity),
        help="Path to hub identity file (created on first run)",
    )
    p.add_argument(
        "--room-registry",
        default=str(paths.room_registry),
        help="Path to room registry TOML (created on first run)",
    )
    p.add_argument(
        "--history-db",
        default=None,
        help="SQLite history database (empty keeps history in memory only)",
    )
    p.add_argument(
        "--nick-map",
        default=None,
        help="TOML file with a [nicks] table of reserved nick = password",
    )
    p.add_argument("--admin", default=None, help="Nick allowed to use /sudo")
    p.add_argument(
        "--history-len", type=int, default=None, help="Messages kept per room"
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: rchat.hub)"
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
        "--greeting",
        default=None,
        help="System message sent to each new connection",
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
    """Defaults, then the config file, then command-line overrides."""
    config_path = str(args.config)

    cfg = HubRuntimeConfig(
        config_path=config_path,
        configdir=args.configdir,
        identity_path=str(args.identity),
        room_registry_path=str(args.room_registry),
    )
    if config_path and os.path.exists(config_path):
        cfg = load_config_file(cfg, config_path)

    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)
    if args.history_db is not None:
        cfg = replace(cfg, history_db_path=str(args.history_db) or None)
    if args.nick_map is not None:
        cfg = replace(cfg, nick_map_path=str(args.nick_map) or None)
    if args.admin is not None:
        cfg = replace(cfg, admin_nick=str(args.admin))
    if args.history_len is not None:
        if args.history_len < 0:
            raise SystemExit("--history-len must not be negative")
        cfg = replace(cfg, history_len=int(args.history_len))

    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)

    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))

    if args.hub_name is not None:
        cfg = replace(cfg, hub_name=args.hub_name)
    if args.greeting is not None:
        cfg = replace(cfg, greeting=args.greeting or None)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)
    room_registry_path = str(args.room_registry)
    paths = HubPaths.from_env()

    if _ensure_first_run_files(
        config_path,
        identity_path,
        room_registry_path,
        str(paths.history_db),
        str(paths.nick_map),
    ):
        print(
            "Created default rchat files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            f"- Rooms:    {room_registry_path}\n"
            "\nThen re-run rchatd.",
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
