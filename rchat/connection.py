"""Per-connection duplex channel used by the hub.

Each connection owns two threads:
- a reader running the hub's read loop, blocking on the inbox
- a writer draining the outbox onto the transport

The outbox is unbounded, so enqueueing never blocks the sender of a
broadcast. A shared closed event stops both threads.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
from collections.abc import Callable

from .messages import ChatEvent, encode_event


class CloseReason(enum.Enum):
    NORMAL = "closed by peer"
    KICKED = "kicked"
    SHUTDOWN = "hub shutdown"
    TIMEOUT = "timed out"
    PROTOCOL_ERROR = "protocol error"
    TRANSPORT_ERROR = "transport error"

    @property
    def normal(self) -> bool:
        return self in (CloseReason.NORMAL, CloseReason.KICKED, CloseReason.SHUTDOWN)


# Outbox marker: flush everything queued before it, then close.
_CLOSE = object()
# Outbox/inbox marker: stop immediately.
_STOP = object()


class Connection:
    """Transport-agnostic handle for one client.

    Subclasses implement ``_transmit`` and ``_shutdown_transport`` and call
    ``feed`` for every inbound frame. Transports with a size limit override
    ``_deliver`` to pick how each event goes out.
    """

    def __init__(self, label: str) -> None:
        self.label = label
        self.log = logging.getLogger("rchat.connection")
        self._inbox: queue.Queue = queue.Queue()
        self._outbox: queue.Queue = queue.Queue()
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._pending_reason: CloseReason | None = None
        self.close_reason: CloseReason | None = None
        self._reader: threading.Thread | None = None
        self._writer: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.label}>"

    @property
    def default_nick(self) -> str:
        """Placeholder nick assigned before the client picks one."""
        return self.label

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self, read_loop: Callable[[Connection], None]) -> None:
        self._writer = threading.Thread(
            target=self._write_loop, name=f"rchat-w-{self.label}", daemon=True
        )
        self._reader = threading.Thread(
            target=read_loop, args=(self,), name=f"rchat-r-{self.label}", daemon=True
        )
        self._writer.start()
        self._reader.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for both threads; True if they have finished."""
        for t in (self._writer, self._reader):
            if t is not None and t is not threading.current_thread():
                t.join(timeout)
        return not any(
            t is not None and t.is_alive() for t in (self._writer, self._reader)
        )

    # Inbound

    def feed(self, data: bytes) -> None:
        if not self.closed:
            self._inbox.put(data)

    def recv(self) -> bytes | None:
        """Block for the next inbound frame; None once the connection closes."""
        if self.closed:
            return None
        item = self._inbox.get()
        if item is _STOP:
            return None
        return item

    # Outbound

    def send(self, event: ChatEvent) -> None:
        if self.closed:
            self.log.debug("Dropping event for closed connection %s", self.label)
            return
        self._outbox.put(event)

    def close_after_flush(self, reason: CloseReason) -> None:
        """Close once every event queued so far has been written."""
        if self.closed:
            return
        with self._close_lock:
            if self._pending_reason is None:
                self._pending_reason = reason
        self._outbox.put(_CLOSE)

    def close(self, reason: CloseReason = CloseReason.NORMAL) -> None:
        with self._close_lock:
            if self.closed:
                return
            self.close_reason = reason
            self._closed.set()
        self._inbox.put(_STOP)
        self._outbox.put(_STOP)
        try:
            self._shutdown_transport()
        except Exception:
            self.log.debug("Transport shutdown failed %s", self.label, exc_info=True)

    def _write_loop(self) -> None:
        while True:
            item = self._outbox.get()
            if item is _STOP:
                return
            if item is _CLOSE:
                self.close(self._pending_reason or CloseReason.NORMAL)
                return
            if self.closed:
                return
            try:
                self._deliver(item)
            except Exception as e:
                self.log.warning("Send failed conn=%s err=%s", self.label, e)
                self.close(CloseReason.TRANSPORT_ERROR)
                return

    def _deliver(self, event: ChatEvent) -> None:
        self._transmit(encode_event(event))

    def _transmit(self, payload: bytes) -> None:
        raise NotImplementedError

    def _shutdown_transport(self) -> None:
        raise NotImplementedError
