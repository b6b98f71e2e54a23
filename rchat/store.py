"""Message history persistence.

The hub hands every broadcast to a ``HistorySink``. ``SqliteHistoryStore``
appends to SQLite from its own writer thread so a slow disk never holds up
the dispatcher; ``load_recent`` is only used at startup to seed the rings.
"""

from __future__ import annotations

import logging
import os
import queue
import sqlite3
import threading
from datetime import datetime, timezone

from .messages import ChatEvent
from .util import expand_path


class HistorySink:
    """Append-only destination for room messages. Best effort."""

    def append(self, room: str, event: ChatEvent) -> None:
        raise NotImplementedError

    def load_recent(self, room: str, n: int) -> list[ChatEvent]:
        return []

    def forget_room(self, room: str) -> None:
        pass

    def close(self, timeout: float | None = None) -> None:
        pass


class NullHistorySink(HistorySink):
    def append(self, room: str, event: ChatEvent) -> None:
        pass


_STOP = object()


class SqliteHistoryStore(HistorySink):
    _SCHEMA = """
    CREATE TABLE IF NOT EXISTS messages (
        id     INTEGER PRIMARY KEY AUTOINCREMENT,
        room   TEXT NOT NULL,
        tim    INTEGER NOT NULL,
        sender TEXT NOT NULL,
        msg    TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room, id);
    """

    def __init__(self, path: str) -> None:
        self.log = logging.getLogger("rchat.store")
        self.path = expand_path(path)
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(self._SCHEMA)
        self._conn.commit()

        self._queue: queue.Queue = queue.Queue()
        self._closed = False
        self._writer = threading.Thread(
            target=self._write_loop, name="rchat-history", daemon=True
        )
        self._writer.start()
        self.log.info("History store opened path=%s", self.path)

    def append(self, room: str, event: ChatEvent) -> None:
        if self._closed:
            return
        self._queue.put(("append", room, event))

    def forget_room(self, room: str) -> None:
        if self._closed:
            return
        self._queue.put(("forget", room, None))

    def load_recent(self, room: str, n: int) -> list[ChatEvent]:
        """The last ``n`` messages of ``room``, oldest first."""
        if n <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                "SELECT tim, sender, msg FROM messages WHERE room=? ORDER BY id DESC LIMIT ?",
                (room, int(n)),
            ).fetchall()
        return [
            ChatEvent(
                sender_id=sender,
                text=msg,
                timestamp=datetime.fromtimestamp(tim / 1000, tz=timezone.utc),
            )
            for tim, sender, msg in reversed(rows)
        ]

    def _write_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            op, room, event = item
            try:
                with self._lock:
                    if op == "append":
                        self._conn.execute(
                            "INSERT INTO messages (room, tim, sender, msg) VALUES (?, ?, ?, ?)",
                            (
                                room,
                                round(event.timestamp.timestamp() * 1000),
                                event.sender_id,
                                event.text,
                            ),
                        )
                    elif op == "forget":
                        self._conn.execute("DELETE FROM messages WHERE room=?", (room,))
                    self._conn.commit()
            except sqlite3.Error:
                self.log.exception("History write failed op=%s room=%s", op, room)

    def close(self, timeout: float | None = None) -> None:
        """Drain pending writes, then close the database."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._writer.join(timeout)
        if self._writer.is_alive():
            self.log.warning("History writer did not finish within %ss", timeout)
            return
        with self._lock:
            self._conn.close()
        self.log.info("History store closed")
