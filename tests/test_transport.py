from datetime import datetime, timezone

import pytest
import RNS

from rchat.connection import CloseReason
from rchat.messages import ChatEvent, decode_event
from rchat.transport import LinkConnection


class _StubLink:
    def __init__(self) -> None:
        self.link_id = bytes.fromhex("0123456789abcdef0011")
        self.status = RNS.Link.ACTIVE
        self.teardown_reason = None
        self.MDU = 400
        self.packet_cb = None
        self.closed_cb = None
        self.teardowns = 0

    def set_packet_callback(self, cb) -> None:
        self.packet_cb = cb

    def set_link_closed_callback(self, cb) -> None:
        self.closed_cb = cb

    def teardown(self) -> None:
        self.teardowns += 1
        self.status = RNS.Link.CLOSED


class _Wire:
    """Stands in for RNS.Packet and RNS.Resource and records what is sent."""

    def __init__(self) -> None:
        self.packets: list[bytes] = []
        self.resources: list[bytes] = []
        self.resource_status: int | None = 0x06

    def packet_type(self):
        wire = self

        class Packet:
            def __init__(self, link, data) -> None:
                self.data = data

            def send(self) -> None:
                wire.packets.append(self.data)

        return Packet

    def resource_type(self):
        wire = self

        class Resource:
            COMPLETE = 0x06
            FAILED = 0x07

            def __init__(self, data, link, advertise=True, auto_compress=True, callback=None) -> None:
                if wire.resource_status is None:
                    raise RuntimeError("link not ready for a resource")
                wire.resources.append(data)
                self.status = wire.resource_status
                callback(self)

        return Resource


@pytest.fixture
def wire(monkeypatch) -> _Wire:
    w = _Wire()
    monkeypatch.setattr(RNS, "Packet", w.packet_type())
    monkeypatch.setattr(RNS, "Resource", w.resource_type())
    return w


def _event(text: str) -> ChatEvent:
    return ChatEvent(
        sender_id="alice",
        text=text,
        timestamp=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


def test_placeholder_nick_is_link_id_prefix() -> None:
    conn = LinkConnection(_StubLink())
    assert conn.default_nick == "01234567"
    assert conn.link_id == "0123456789abcdef0011"


def test_packets_feed_the_inbox() -> None:
    link = _StubLink()
    conn = LinkConnection(link)
    link.packet_cb(b"frame", None)
    assert conn.recv() == b"frame"


def test_remote_timeout_maps_to_timeout_reason() -> None:
    link = _StubLink()
    conn = LinkConnection(link)
    link.teardown_reason = RNS.Link.TIMEOUT
    link.status = RNS.Link.CLOSED
    link.closed_cb(link)
    assert conn.close_reason is CloseReason.TIMEOUT
    assert link.teardowns == 0


def test_local_close_tears_down_link() -> None:
    link = _StubLink()
    conn = LinkConnection(link)
    conn.close(CloseReason.KICKED)
    assert link.teardowns == 1
    assert conn.recv() is None



def test_small_event_goes_out_as_one_packet(wire) -> None:
    conn = LinkConnection(_StubLink())
    conn._deliver(_event("hello"))
    assert [decode_event(p).text for p in wire.packets] == ["hello"]
    assert wire.resources == []


def test_oversized_event_goes_out_as_resource(wire) -> None:
    conn = LinkConnection(_StubLink())
    ev = _event(", ".join(f"user{i:026d}" for i in range(20)))
    conn._deliver(ev)
    assert wire.packets == []
    assert len(wire.resources) == 1
    assert len(wire.resources[0]) > 400
    assert decode_event(wire.resources[0]) == ev


@pytest.mark.parametrize("status", [None, 0x07])
def test_oversized_event_is_chunked_when_resource_fails(wire, status) -> None:
    wire.resource_status = status
    link = _StubLink()
    conn = LinkConnection(link)
    ev = _event("x" * 1500)
    conn._deliver(ev)

    assert len(wire.packets) > 1
    assert all(len(p) <= link.MDU for p in wire.packets)
    chunks = [decode_event(p) for p in wire.packets]
    assert "".join(c.text for c in chunks) == ev.text
    assert {(c.sender_id, c.timestamp) for c in chunks} == {(ev.sender_id, ev.timestamp)}


def test_writer_thread_sends_through_link(wire) -> None:
    conn = LinkConnection(_StubLink())
    conn.start(lambda c: None)
    conn.send(_event("y" * 600))
    conn.send(_event("after"))
    conn.close_after_flush(CloseReason.NORMAL)
    assert conn.join(5)
    assert [decode_event(r).text for r in wire.resources] == ["y" * 600]
    assert [decode_event(p).text for p in wire.packets] == ["after"]
