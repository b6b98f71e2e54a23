"""Command handling for rchat admin commands."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .connection import CloseReason
from .fanout import Outbound
from .rooms import RoomExistsError, RoomNotFoundError, RoomProtectedError

if TYPE_CHECKING:
    from .connection import Connection
    from .service import HubService


ADMIN_COMMANDS = ("count", "create", "delete", "help", "kick")


class CommandHandler:
    """Handles ``/sudo`` commands for the rchat hub."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rchat.commands")

    def is_admin(self, conn: Connection) -> bool:
        user = self.hub.registry.get(conn)
        admin = self.hub.config.admin_nick
        return bool(admin) and user is not None and user.nick == admin

    def handle_admin(self, conn: Connection, text: str, outbound: Outbound) -> None:
        """Run one admin command. Called with the state lock held."""
        if not self.is_admin(conn):
            outbound.system(conn, "Unrecognised command, use /man for more info")
            return

        self.log.info("Admin command conn=%s cmd=%r", conn.label, text)

        parts = text.split()
        if len(parts) == 2:
            cmd, arg = parts
            if cmd == "create":
                self._create(conn, arg, outbound)
                return
            if cmd == "delete":
                self._delete(conn, arg, outbound)
                return
            if cmd == "kick":
                self._kick(conn, arg, outbound)
                return
        elif len(parts) == 1:
            if parts[0] == "count":
                outbound.system(conn, f"Online: {self.hub.registry.count()}")
                return
            if parts[0] == "help":
                outbound.system(conn, f"Available commands: {', '.join(ADMIN_COMMANDS)}")
                return

        outbound.system(conn, f"Invalid command: {text}")

    def _create(self, conn: Connection, name: str, outbound: Outbound) -> None:
        try:
            room = self.hub.rooms.create(name)
        except RoomExistsError as e:
            outbound.system(conn, f"Room exists: {e.room}")
            return
        except ValueError:
            outbound.system(conn, f"Invalid room name: {name}")
            return

        outbound.system(conn, f"Created room: {room}")
        outbound.defer(self.hub.rooms.save_registry)

    def _delete(self, conn: Connection, name: str, outbound: Outbound) -> None:
        try:
            self.hub.rooms.remove(name, outbound)
        except RoomProtectedError as e:
            outbound.system(conn, f"Cannot delete default room: {e.room}")
            return
        except RoomNotFoundError as e:
            outbound.system(conn, f"Room does not exist: {e.room}")
            return

        outbound.system(conn, f"Deleted room: {name}")
        self.hub.sink.forget_room(name)
        outbound.defer(self.hub.rooms.save_registry)

    def _kick(self, conn: Connection, nick: str, outbound: Outbound) -> None:
        target = self.hub.registry.find_by_nick(nick)
        if target is None:
            outbound.system(conn, f"Not found: {nick}")
            return

        outbound.system(target, "kicked by admin")
        outbound.close_after(target, CloseReason.KICKED)
        if target is not conn:
            outbound.system(conn, f"Kicked: {nick}")
        self.log.info("Kicked nick=%s conn=%s by=%s", nick, target.label, conn.label)
