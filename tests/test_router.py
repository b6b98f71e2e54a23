from __future__ import annotations

from dataclasses import replace

from rchat.connection import CloseReason
from rchat.constants import SENDER_SYSTEM
from rchat.messages import Command, CommandKind


def _send(hub, conn, kind: CommandKind, text: str = "") -> None:
    hub.dispatch(conn, Command(kind, text))


def test_new_connection_lands_in_default_room(hub, connect) -> None:
    a = connect()
    user = hub.registry.get(a)
    assert user.room == "general"
    assert user.nick == a.default_nick


def test_join_replays_history_then_greeting(hub, connect, config) -> None:
    hub.config = replace(config, greeting="welcome")
    a = connect("alice")
    _send(hub, a, CommandKind.BROADCAST, "one")

    late = connect(drain=False)
    assert [(e.sender_id, e.text) for e in late.drain()] == [
        ("alice", "one"),
        (SENDER_SYSTEM, "welcome"),
    ]


def test_create_duplicate_and_non_admin(hub, connect) -> None:
    admin = connect("admin")
    other = connect("bob")

    _send(hub, admin, CommandKind.ADMIN, "create vip")
    assert admin.texts() == ["Created room: vip"]
    assert hub.rooms.exists("vip")

    _send(hub, admin, CommandKind.ADMIN, "create vip")
    assert admin.texts() == ["Room exists: vip"]

    _send(hub, other, CommandKind.ADMIN, "create x")
    assert other.texts() == ["Unrecognised command, use /man for more info"]
    assert not hub.rooms.exists("x")


def test_both_rename_to_same_nick(hub, connect) -> None:
    a = connect()
    b = connect()

    _send(hub, a, CommandKind.RENAME, "alice")
    _send(hub, b, CommandKind.RENAME, "alice")

    replies = sorted(a.texts() + b.texts())
    assert replies == ["nick in use: alice", "nick set: alice"]


def test_rename_invalid_and_reserved(hub, connect) -> None:
    hub.nick_map = {"root": "pw"}
    a = connect()

    _send(hub, a, CommandKind.RENAME, "bad nick")
    _send(hub, a, CommandKind.RENAME, "root")
    _send(hub, a, CommandKind.RENAME, "root:nope")
    _send(hub, a, CommandKind.RENAME, "root:pw")
    assert a.texts() == [
        "invalid nick: bad nick",
        "invalid nick: root",
        "invalid nick: root",
        "nick set: root",
    ]
    assert hub.registry.get(a).nick == "root"


def test_rename_to_system_cannot_spoof_hub_notices(hub, connect) -> None:
    a = connect()
    b = connect()

    _send(hub, a, CommandKind.RENAME, "system")
    _send(hub, a, CommandKind.BROADCAST, "hub restarting, send password")
    assert a.texts()[0] == "invalid nick: system"
    events = b.drain()
    assert [e.text for e in events] == ["hub restarting, send password"]
    assert events[0].sender_id == a.default_nick
    assert events[0].sender_id != SENDER_SYSTEM


def test_history_ring_keeps_last_two(hub, connect) -> None:
    a = connect("alice")
    for text in ("a", "b", "c"):
        _send(hub, a, CommandKind.BROADCAST, text)

    assert [e.text for e in hub.rooms.recent("general")] == ["b", "c"]

    joiner = connect("bob")
    _send(hub, joiner, CommandKind.CHANGE_ROOM, "general")
    assert joiner.texts() == ["connected to: general", "b", "c"]


def test_broadcast_reaches_room_only(hub, connect) -> None:
    admin = connect("admin")
    a = connect("alice")
    b = connect("bob")
    _send(hub, admin, CommandKind.ADMIN, "create vip")
    _send(hub, b, CommandKind.CHANGE_ROOM, "vip")
    admin.drain()
    b.drain()

    _send(hub, a, CommandKind.BROADCAST, "hi")

    got = a.drain()
    assert [(e.sender_id, e.text) for e in got] == [("alice", "hi")]
    assert admin.texts() == ["hi"]
    assert b.texts() == []


def test_blank_broadcast_is_ignored(hub, connect) -> None:
    a = connect("alice")
    _send(hub, a, CommandKind.BROADCAST, "   ")
    assert a.texts() == []
    assert hub.rooms.recent("general") == []


def test_oversized_broadcast_is_rejected(hub, connect) -> None:
    a = connect("alice")
    text = "x" * (hub.config.max_msg_body_bytes + 1)
    _send(hub, a, CommandKind.BROADCAST, text)
    limit = hub.config.max_msg_body_bytes
    assert a.texts() == [f"message too long ({limit + 1} > {limit} bytes)"]
    assert hub.rooms.recent("general") == []


def test_change_room_to_unknown_leaves_user_alone(hub, connect) -> None:
    a = connect("alice")
    _send(hub, a, CommandKind.CHANGE_ROOM, "nowhere")
    assert a.texts() == ["unchanged, invalid room: nowhere"]
    assert hub.registry.get(a).room == "general"


def test_list_rooms_and_users(hub, connect) -> None:
    admin = connect("admin")
    a = connect("alice")
    _send(hub, admin, CommandKind.ADMIN, "create vip")
    admin.drain()

    _send(hub, a, CommandKind.LIST_ROOMS)
    assert a.texts() == ["connected to: general, available: general, vip"]

    _send(hub, a, CommandKind.LIST_USERS)
    assert a.texts() == ["users in general: admin, alice"]


def test_delete_room_moves_members_with_one_notice_each(hub, connect) -> None:
    admin = connect("admin")
    a = connect("alice")
    b = connect("bob")
    c = connect("carol")
    _send(hub, admin, CommandKind.ADMIN, "create vip")
    for conn in (a, b):
        _send(hub, conn, CommandKind.CHANGE_ROOM, "vip")
    for conn in (admin, a, b, c):
        conn.drain()

    _send(hub, admin, CommandKind.ADMIN, "delete vip")

    assert admin.texts() == ["Deleted room: vip"]
    assert a.texts() == ["room deleted, reconnected to general"]
    assert b.texts() == ["room deleted, reconnected to general"]
    assert c.texts() == []
    assert not hub.rooms.exists("vip")
    for _conn, user in hub.registry.snapshot():
        assert user.room == "general"


def test_admin_in_deleted_room_gets_notice_before_confirmation(hub, connect) -> None:
    admin = connect("admin")
    _send(hub, admin, CommandKind.ADMIN, "create vip")
    _send(hub, admin, CommandKind.CHANGE_ROOM, "vip")
    admin.drain()

    _send(hub, admin, CommandKind.ADMIN, "delete vip")
    assert admin.texts() == ["room deleted, reconnected to general", "Deleted room: vip"]


def test_default_room_survives_any_admin_sequence(hub, connect) -> None:
    admin = connect("admin")
    for cmd in ("create a", "delete general", "create b", "delete a", "delete general"):
        _send(hub, admin, CommandKind.ADMIN, cmd)
        assert hub.rooms.exists("general")

    texts = admin.texts()
    assert texts.count("Cannot delete default room: general") == 2

    _send(hub, admin, CommandKind.ADMIN, "delete zzz")
    assert admin.texts() == ["Room does not exist: zzz"]


def test_admin_count_help_and_invalid(hub, connect) -> None:
    admin = connect("admin")
    connect("alice")

    _send(hub, admin, CommandKind.ADMIN, "count")
    _send(hub, admin, CommandKind.ADMIN, "help")
    _send(hub, admin, CommandKind.ADMIN, "frobnicate now please")
    _send(hub, admin, CommandKind.ADMIN, "create bad\x00name")
    assert admin.texts() == [
        "Online: 2",
        "Available commands: count, create, delete, help, kick",
        "Invalid command: frobnicate now please",
        "Invalid room name: bad\x00name",
    ]


def test_kick_notifies_and_closes_target(hub, connect) -> None:
    admin = connect("admin")
    victim = connect("mallory")

    _send(hub, admin, CommandKind.ADMIN, "kick mallory")
    assert admin.texts() == ["Kicked: mallory"]
    assert victim.texts() == ["kicked by admin"]
    assert victim.closed
    assert victim.close_reason is CloseReason.KICKED
    assert victim.torn_down

    _send(hub, admin, CommandKind.ADMIN, "kick nobody")
    assert admin.texts() == ["Not found: nobody"]
