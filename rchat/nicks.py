"""Nickname policy: who may claim which nick."""

from __future__ import annotations

import enum
import json
import os
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from .constants import NICK_MAX_CHARS, SYNTHETIC_SENDERS
from .util import expand_path, is_alnum_ascii


class NickStatus(enum.Enum):
    OK = "ok"
    USED = "used"
    INVALID = "invalid"


def split_nick(requested: str) -> tuple[str, str]:
    """Split ``nick[:password]``; the password is "" when absent."""
    nick, _, password = requested.partition(":")
    return nick, password


def verify_nick(
    requested: str,
    taken: Iterable[str],
    nick_map: Mapping[str, str],
    *,
    max_chars: int = NICK_MAX_CHARS,
) -> tuple[NickStatus, str | None]:
    """Decide whether ``requested`` may be claimed.

    Checks run in order: already in use, then a sender id the hub uses for
    its own events, then reserved-password mismatch or a name that is not
    plain ASCII alphanumerics. Pure; the caller must hold whatever lock
    makes ``taken`` current.
    """
    nick, password = split_nick(requested)

    if nick in set(taken):
        return NickStatus.USED, None

    if nick in SYNTHETIC_SENDERS:
        return NickStatus.INVALID, None
    if nick in nick_map and password != nick_map[nick]:
        return NickStatus.INVALID, None
    if not nick or not is_alnum_ascii(nick):
        return NickStatus.INVALID, None
    if max_chars and len(nick) > int(max_chars):
        return NickStatus.INVALID, None

    return NickStatus.OK, nick


def load_nick_map(path: str | None) -> Mapping[str, str]:
    """Load the reserved nick table, read-only.

    TOML files use a ``[nicks]`` table; ``.json`` files hold a flat object.
    A missing path yields an empty table.
    """
    if not path:
        return MappingProxyType({})

    p = expand_path(path)
    if not os.path.exists(p):
        raise FileNotFoundError(f"nick map not found at {p}")

    if p.endswith(".json"):
        with open(p, encoding="utf-8") as f:
            data = json.load(f)
    else:
        from .config import load_toml

        data = load_toml(p).get("nicks", {})

    if not isinstance(data, dict):
        raise ValueError("nick map must be a table of nick = password")

    table: dict[str, str] = {}
    for nick, password in data.items():
        if not isinstance(nick, str) or not isinstance(password, str):
            raise ValueError(f"nick map entry for {nick!r} must be a string")
        table[nick] = password
    return MappingProxyType(table)
