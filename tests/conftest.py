from __future__ import annotations

import queue

import pytest

from rchat.config import HubRuntimeConfig
from rchat.connection import _CLOSE, _STOP, CloseReason, Connection
from rchat.messages import ChatEvent, Command, CommandKind, decode_event
from rchat.service import HubService


class FakeConnection(Connection):
    """In-memory connection that records what the hub delivers.

    Without threads, ``drain`` pulls the outbox the way the writer thread
    would. With threads started, ``_transmit`` records each encoded frame.
    """

    def __init__(self, label: str) -> None:
        super().__init__(label)
        self.received: list[ChatEvent] = []
        self.torn_down = False

    def _transmit(self, payload: bytes) -> None:
        self.received.append(decode_event(payload))

    def _shutdown_transport(self) -> None:
        self.torn_down = True

    def drain(self) -> list[ChatEvent]:
        """Deliver everything queued so far; returns the new events."""
        start = len(self.received)
        while True:
            try:
                item = self._outbox.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                break
            if item is _CLOSE:
                self.close(self._pending_reason or CloseReason.NORMAL)
                break
            self.received.append(item)
        return self.received[start:]

    def texts(self) -> list[str]:
        return [ev.text for ev in self.drain()]


@pytest.fixture
def config() -> HubRuntimeConfig:
    return HubRuntimeConfig(history_len=2, admin_nick="admin")


@pytest.fixture
def hub(config: HubRuntimeConfig) -> HubService:
    return HubService(config)


@pytest.fixture
def connect(hub: HubService):
    """Attach a new in-memory connection, optionally renaming it."""
    counter = iter(range(1, 1000))

    def _connect(nick: str | None = None, *, drain: bool = True) -> FakeConnection:
        conn = FakeConnection(f"c{next(counter):07d}")
        hub.attach(conn, start=False)
        if nick is not None:
            hub.dispatch(conn, Command(CommandKind.RENAME, nick))
        if drain:
            conn.drain()
        return conn

    return _connect
