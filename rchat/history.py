"""Fixed-capacity recent-message buffer kept per room."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from .messages import ChatEvent


class HistoryRing:
    """Oldest-evicted-first buffer of the last ``capacity`` events.

    Not locked on its own; the room directory only touches it under the hub
    state lock.
    """

    def __init__(self, capacity: int, events: Iterable[ChatEvent] = ()) -> None:
        if capacity < 0:
            raise ValueError("history capacity must not be negative")
        self._events: deque[ChatEvent] = deque(events, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    def append(self, event: ChatEvent) -> None:
        self._events.append(event)

    def recent(self) -> list[ChatEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
