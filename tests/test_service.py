import logging
import time

from rchat.connection import CloseReason
from rchat.messages import Command, CommandKind, encode_command

from conftest import FakeConnection


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_read_loop_dispatches_frames(hub) -> None:
    conn = FakeConnection("live0001")
    hub.attach(conn)
    conn.feed(encode_command(Command(CommandKind.RENAME, "alice")))
    conn.feed(encode_command(Command(CommandKind.BROADCAST, "hello")))

    assert _wait_for(lambda: len(conn.received) == 2)
    assert [(e.sender_id, e.text) for e in conn.received] == [
        ("system", "nick set: alice"),
        ("alice", "hello"),
    ]

    conn.close()
    assert conn.join(5)
    assert hub.registry.get(conn) is None


def test_malformed_frame_closes_only_that_connection(hub, connect, caplog) -> None:
    bystander = connect("bob")
    conn = FakeConnection("bad00001")
    hub.attach(conn)

    with caplog.at_level(logging.WARNING, logger="rchat.hub"):
        conn.feed(b"\xff\x00garbage")
        assert conn.join(5)

    assert conn.close_reason is CloseReason.PROTOCOL_ERROR
    assert hub.registry.get(conn) is None
    assert hub.registry.get(bystander) is not None
    assert any("Bad frame" in r.getMessage() for r in caplog.records)
    assert any("protocol error" in r.getMessage() for r in caplog.records)


def test_stop_drains_and_refuses_new_connections(hub) -> None:
    conn = FakeConnection("live0002")
    hub.attach(conn)
    hub.dispatch(conn, Command(CommandKind.LIST_USERS))

    hub.stop()

    assert conn.closed
    assert conn.close_reason is CloseReason.SHUTDOWN
    assert [e.text for e in conn.received] == ["users in general: live0002"]
    assert hub.registry.count() == 0

    late = FakeConnection("late0002")
    hub.attach(late)
    assert late.closed
    assert hub.registry.get(late) is None
