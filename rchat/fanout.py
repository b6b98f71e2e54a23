"""Outbound event batches.

A command handler collects everything it wants delivered in an ``Outbound``
while holding the hub state lock. ``flush`` hands the events to each
recipient's outbox (a non-blocking queue put) before the lock is released,
so two broadcasts into the same room reach every member in the order they
were appended to the room's history. Work that must not run under the lock
(file writes, database appends) goes through ``defer``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .connection import CloseReason
from .messages import ChatEvent, system_event

if TYPE_CHECKING:
    from .connection import Connection
    from .registry import ConnectionRegistry


class Outbound:
    def __init__(self) -> None:
        self.events: list[tuple[Connection, ChatEvent]] = []
        self.closes: list[tuple[Connection, CloseReason]] = []
        self._deferred: list[Callable[[], None]] = []

    def __len__(self) -> int:
        return len(self.events)

    def to(self, conn: Connection, event: ChatEvent) -> None:
        self.events.append((conn, event))

    def system(self, conn: Connection, text: str) -> None:
        self.to(conn, system_event(text))

    def close_after(self, conn: Connection, reason: CloseReason) -> None:
        self.closes.append((conn, reason))

    def defer(self, fn: Callable[[], None]) -> None:
        self._deferred.append(fn)

    def flush(self) -> None:
        """Enqueue collected events, then pending closes, in order."""
        events, self.events = self.events, []
        closes, self.closes = self.closes, []
        for conn, event in events:
            conn.send(event)
        for conn, reason in closes:
            conn.close_after_flush(reason)

    def run_deferred(self, log: logging.Logger) -> None:
        """Run deferred work. Call without the state lock held."""
        deferred, self._deferred = self._deferred, []
        for fn in deferred:
            try:
                fn()
            except Exception:
                log.exception("Deferred hub task failed")


class BroadcastFanout:
    """Delivers one event to every connection currently in a room."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        self.log = logging.getLogger("rchat.fanout")

    def broadcast(self, room: str, event: ChatEvent, outbound: Outbound) -> int:
        members = self.registry.members(room)
        for conn, _user in members:
            outbound.to(conn, event)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Fan-out room=%s sender=%s recipients=%d", room, event.sender_id, len(members))
        return len(members)
