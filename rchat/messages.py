"""Wire message shapes shared by the hub and its clients.

Two shapes cross the wire:
- ``Command`` (client to hub): a kind plus free text
- ``ChatEvent`` (hub to client): timestamp, sender id and text

Both are carried in CBOR envelopes (see ``rchat.envelope``).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .codec import decode, encode
from .constants import (
    CMD_LIST_ROOMS,
    CMD_LIST_USERS,
    K_BODY,
    K_KIND,
    K_SRC,
    K_T,
    K_TS,
    KIND_ADMIN,
    KIND_BROADCAST,
    KIND_CHANGE_ROOM,
    KIND_LIST_ROOMS,
    KIND_LIST_USERS,
    KIND_RENAME,
    PREFIX_ADMIN,
    PREFIX_CHANGE_ROOM,
    PREFIX_RENAME,
    SENDER_SYSTEM,
    T_COMMAND,
    T_EVENT,
)
from .envelope import make_envelope, validate_envelope


class CommandKind(enum.IntEnum):
    ADMIN = KIND_ADMIN
    BROADCAST = KIND_BROADCAST
    RENAME = KIND_RENAME
    LIST_ROOMS = KIND_LIST_ROOMS
    CHANGE_ROOM = KIND_CHANGE_ROOM
    LIST_USERS = KIND_LIST_USERS


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    text: str = ""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatEvent:
    sender_id: str
    text: str
    timestamp: datetime = field(default_factory=_utcnow)


def system_event(text: str) -> ChatEvent:
    return ChatEvent(sender_id=SENDER_SYSTEM, text=text)


def _to_ms(ts: datetime) -> int:
    return round(ts.timestamp() * 1000)


def _from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def encode_command(cmd: Command) -> bytes:
    env = make_envelope(T_COMMAND, kind=int(cmd.kind), body=cmd.text)
    return encode(env)


def decode_command(data: bytes) -> Command:
    """Decode and validate one inbound frame.

    Raises TypeError or ValueError for anything that is not a well-formed
    command; the caller treats that as a protocol error.
    """
    env = decode(data)
    validate_envelope(env)
    if env[K_T] != T_COMMAND:
        raise ValueError(f"expected a command, got message type {env[K_T]}")
    try:
        kind = CommandKind(env[K_KIND])
    except ValueError:
        raise ValueError(f"unknown command kind {env[K_KIND]}") from None
    return Command(kind=kind, text=env.get(K_BODY, ""))


def encode_event(ev: ChatEvent) -> bytes:
    env = make_envelope(
        T_EVENT, src=ev.sender_id, body=ev.text, ts=_to_ms(ev.timestamp)
    )
    return encode(env)


def decode_event(data: bytes) -> ChatEvent:
    env = decode(data)
    validate_envelope(env)
    if env[K_T] != T_EVENT:
        raise ValueError(f"expected an event, got message type {env[K_T]}")
    return ChatEvent(
        sender_id=env[K_SRC],
        text=env.get(K_BODY, ""),
        timestamp=_from_ms(env[K_TS]),
    )


def parse_command_line(line: str) -> Command | None:
    """Map a line typed into a client onto the command it sends.

    Lines starting with "/" are commands; anything else is a broadcast.
    Returns None for blank input and for "/" commands the hub does not know
    (clients handle those locally, e.g. /man and /moo).
    """
    text = line.strip()
    if not text:
        return None
    if not text.startswith("/"):
        return Command(CommandKind.BROADCAST, text)

    text = text[1:]
    if text.startswith(PREFIX_RENAME):
        return Command(CommandKind.RENAME, text[len(PREFIX_RENAME):])
    if text == CMD_LIST_ROOMS:
        return Command(CommandKind.LIST_ROOMS)
    if text.startswith(PREFIX_CHANGE_ROOM):
        return Command(CommandKind.CHANGE_ROOM, text[len(PREFIX_CHANGE_ROOM):])
    if text == CMD_LIST_USERS:
        return Command(CommandKind.LIST_USERS)
    if text.startswith(PREFIX_ADMIN):
        return Command(CommandKind.ADMIN, text[len(PREFIX_ADMIN):])
    return None
