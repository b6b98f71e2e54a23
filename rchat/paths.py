from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class HubPaths:
    """Where rchatd keeps its files when the CLI is not told otherwise."""

    home: Path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> HubPaths:
        env = os.environ if environ is None else environ
        override = env.get("RCHAT_HOME")
        return cls(Path(override) if override else Path.home() / ".rchat")

    @property
    def config(self) -> Path:
        return self.home / "rchat.toml"

    @property
    def identity(self) -> Path:
        return self.home / "hub_identity"

    @property
    def room_registry(self) -> Path:
        return self.home / "rooms.toml"

    @property
    def history_db(self) -> Path:
        return self.home / "history.db"

    @property
    def nick_map(self) -> Path:
        return self.home / "nicks.toml"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, 0o700)
    except OSError:
        pass
