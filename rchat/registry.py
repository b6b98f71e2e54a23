from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from .nicks import NickStatus, verify_nick

if TYPE_CHECKING:
    from .connection import Connection
    from .service import HubService


@dataclass(frozen=True)
class User:
    room: str
    nick: str


class ConnectionRegistry:
    """
    Live connections and the room/nick each one currently holds.

    Every method takes the hub state lock for its whole body, so callers can
    use single operations without holding it themselves. The lock is
    re-entrant; the dispatcher holds it across a whole command and calls
    these methods from inside.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rchat.registry")
        self._users: dict[Connection, User] = {}

    def register(self, conn: Connection, user: User) -> None:
        with self.hub._state_lock:
            self._users[conn] = user
        self.log.debug("Registered conn=%s nick=%s room=%s", conn.label, user.nick, user.room)

    def unregister(self, conn: Connection) -> User | None:
        with self.hub._state_lock:
            return self._users.pop(conn, None)

    def get(self, conn: Connection) -> User | None:
        with self.hub._state_lock:
            return self._users.get(conn)

    def update(self, conn: Connection, fn: Callable[[User], User]) -> User | None:
        """Replace the entry for ``conn`` with ``fn(old)``; None if not registered."""
        with self.hub._state_lock:
            old = self._users.get(conn)
            if old is None:
                return None
            new = fn(old)
            self._users[conn] = new
            return new

    def snapshot(self) -> list[tuple[Connection, User]]:
        with self.hub._state_lock:
            return list(self._users.items())

    def count(self) -> int:
        with self.hub._state_lock:
            return len(self._users)

    def nicks(self) -> list[str]:
        with self.hub._state_lock:
            return [u.nick for u in self._users.values()]

    def members(self, room: str) -> list[tuple[Connection, User]]:
        with self.hub._state_lock:
            return [(c, u) for c, u in self._users.items() if u.room == room]

    def find_by_nick(self, nick: str) -> Connection | None:
        with self.hub._state_lock:
            for conn, user in self._users.items():
                if user.nick == nick:
                    return conn
            return None

    def claim_nick(
        self, conn: Connection, requested: str, nick_map: Mapping[str, str]
    ) -> tuple[NickStatus, str]:
        """
        Verify and assign a nick in one step.

        Returns the status and the bare nick (password stripped) for use in
        the reply text.
        """
        with self.hub._state_lock:
            status, nick = verify_nick(
                requested,
                self.nicks(),
                nick_map,
                max_chars=self.hub.config.nick_max_chars,
            )
            bare = nick if nick is not None else requested.partition(":")[0]
            if status is NickStatus.OK and conn in self._users:
                self._users[conn] = replace(self._users[conn], nick=bare)
            return status, bare

    def move_all(self, from_room: str, to_room: str) -> list[Connection]:
        """Reassign every user in ``from_room``; returns the moved connections."""
        with self.hub._state_lock:
            moved: list[Connection] = []
            for conn, user in self._users.items():
                if user.room == from_room:
                    self._users[conn] = replace(user, room=to_room)
                    moved.append(conn)
            return moved

    def clear_all(self) -> list[Connection]:
        with self.hub._state_lock:
            conns = list(self._users)
            self._users.clear()
            return conns
