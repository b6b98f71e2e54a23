"""Room directory for the rchat hub.

This module handles:
- The set of valid room names, in creation order
- One history ring per room
- Room removal, including moving displaced users to the default room
- Room registry persistence to TOML
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from .history import HistoryRing
from .messages import ChatEvent
from .util import expand_path, normalize_room

if TYPE_CHECKING:
    from .connection import Connection
    from .fanout import Outbound
    from .service import HubService


class RoomError(Exception):
    def __init__(self, room: str) -> None:
        super().__init__(room)
        self.room = room


class RoomExistsError(RoomError):
    pass


class RoomNotFoundError(RoomError):
    pass


class RoomProtectedError(RoomError):
    pass


class RoomDirectory:
    """Valid rooms and their recent history.

    All methods take the hub state lock. ``remove`` reassigns displaced
    users through the registry inside the same critical section, so no
    user is ever left pointing at a room that no longer exists.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rchat.rooms")
        self._rooms: dict[str, HistoryRing] = {}
        self._created_ts: dict[str, float] = {}
        self._room_registry_write_lock = threading.Lock()

        self._add(self.default_room)

    @property
    def default_room(self) -> str:
        return self.hub.config.default_room

    @property
    def capacity(self) -> int:
        return int(self.hub.config.history_len)

    def _add(self, name: str, created_ts: float | None = None) -> None:
        self._rooms[name] = HistoryRing(self.capacity)
        self._created_ts[name] = created_ts if created_ts is not None else time.time()

    def norm(self, name: str) -> str:
        return normalize_room(name, max_len=self.hub.config.max_room_name_len)

    def exists(self, name: str) -> bool:
        with self.hub._state_lock:
            return name in self._rooms

    def names(self) -> list[str]:
        with self.hub._state_lock:
            return list(self._rooms)

    def create(self, name: str) -> str:
        """Add an empty room; returns the normalised name."""
        room = self.norm(name)
        with self.hub._state_lock:
            if room in self._rooms:
                raise RoomExistsError(room)
            self._add(room)
        self.log.info("Room created room=%s", room)
        return room

    def remove(self, name: str, outbound: Outbound | None = None) -> list[Connection]:
        """Delete a room and move its users to the default room.

        Each displaced user gets one system notice in ``outbound``. Returns
        the displaced connections.
        """
        with self.hub._state_lock:
            if name == self.default_room:
                raise RoomProtectedError(name)
            if name not in self._rooms:
                raise RoomNotFoundError(name)

            del self._rooms[name]
            self._created_ts.pop(name, None)
            displaced = self.hub.registry.move_all(name, self.default_room)
            if outbound is not None:
                for conn in displaced:
                    outbound.system(
                        conn, f"room deleted, reconnected to {self.default_room}"
                    )

        self.log.info("Room deleted room=%s displaced=%d", name, len(displaced))
        return displaced

    def append(self, name: str, event: ChatEvent) -> None:
        with self.hub._state_lock:
            ring = self._rooms.get(name)
            if ring is None:
                raise RoomNotFoundError(name)
            ring.append(event)

    def recent(self, name: str) -> list[ChatEvent]:
        with self.hub._state_lock:
            ring = self._rooms.get(name)
            if ring is None:
                raise RoomNotFoundError(name)
            return ring.recent()

    def load(
        self,
        names: Iterable[str],
        history: Mapping[str, Iterable[ChatEvent]] | None = None,
        *,
        created: Mapping[str, float] | None = None,
    ) -> None:
        """Seed rooms at startup. Invalid names are logged and skipped."""
        history = history or {}
        created = created or {}
        with self.hub._state_lock:
            for raw in names:
                try:
                    room = self.norm(raw)
                except ValueError as e:
                    self.log.warning("Skipping room %r: %s", raw, e)
                    continue
                if room not in self._rooms:
                    self._add(room, created.get(room))
                for ev in history.get(room, ()):
                    self._rooms[room].append(ev)

    # Registry persistence

    def get_registry_path_for_writes(self) -> str | None:
        p = self.hub.config.room_registry_path
        if not p:
            return None
        return expand_path(str(p))

    def load_registry_from_path(
        self, reg_path: str
    ) -> tuple[dict[str, float], str | None]:
        """Read room names and creation times. Returns (rooms, error_msg)."""
        if not reg_path:
            return {}, "room_registry_path is empty"
        if not os.path.exists(reg_path):
            return {}, f"room registry file not found: {reg_path}"

        from tomlkit import parse

        try:
            with open(reg_path, encoding="utf-8") as f:
                doc = parse(f.read())
        except Exception as e:
            return {}, f"failed to parse rooms registry: {e}"

        rooms = doc.get("rooms")
        if rooms is None:
            return {}, None
        if not isinstance(rooms, dict):
            return {}, "rooms registry: [rooms] must be a table"

        out: dict[str, float] = {}
        for name, tbl in rooms.items():
            ts = None
            if isinstance(tbl, dict):
                ts = tbl.get("created_ts")
            try:
                out[str(name)] = float(ts) if ts is not None else time.time()
            except (TypeError, ValueError):
                out[str(name)] = time.time()
        return out, None

    def save_registry(self) -> None:
        """Write the current room list to the registry file.

        The snapshot is taken inside the registry write lock, so the last
        writer always saves the latest room list.
        """
        reg_path = self.get_registry_path_for_writes()
        if not reg_path:
            return

        from tomlkit import document, dumps, parse, table

        with self._room_registry_write_lock:
            with self.hub._state_lock:
                snapshot = {name: self._created_ts.get(name, time.time()) for name in self._rooms}

            file_stat = None
            doc = None
            if os.path.exists(reg_path):
                try:
                    file_stat = os.stat(reg_path)
                except OSError:
                    file_stat = None
                with open(reg_path, encoding="utf-8") as f:
                    doc = parse(f.read())
            if doc is None:
                doc = document()

            rooms = doc.get("rooms")
            if rooms is None or not isinstance(rooms, dict):
                rooms = table()
                doc["rooms"] = rooms

            for name in [n for n in rooms if n not in snapshot]:
                del rooms[name]
            for name, ts in snapshot.items():
                room_tbl = rooms.get(name)
                if room_tbl is None:
                    room_tbl = table()
                    rooms[name] = room_tbl
                room_tbl["created_ts"] = float(ts)

            new_text = dumps(doc)
            with open(reg_path, "w", encoding="utf-8") as f:
                f.write(new_text)

            if file_stat is not None:
                try:
                    os.chmod(reg_path, file_stat.st_mode)
                except OSError:
                    pass

        self.log.debug("Room registry saved path=%s rooms=%d", reg_path, len(snapshot))
