from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from .fanout import Outbound
from .messages import ChatEvent, Command, CommandKind
from .nicks import NickStatus

if TYPE_CHECKING:
    from .connection import Connection
    from .service import HubService


class MessageRouter:
    """
    Dispatches decoded commands for the rchat hub.

    Each command is one transition of the sender's ``(room, nick)`` state:
    - broadcast: append to the room history and fan out to the room
    - rename / change-room: update the registry entry
    - list-rooms / list-users: answer from a snapshot
    - admin: handed to ``CommandHandler``

    ``route`` must be called with the state lock held; all replies go into
    ``outbound`` and are delivered by the caller.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rchat.router")

    def route(self, conn: Connection, cmd: Command, outbound: Outbound) -> None:
        user = self.hub.registry.get(conn)
        if user is None:
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn=%s nick=%s room=%s kind=%s len=%s",
                conn.label,
                user.nick,
                user.room,
                cmd.kind.name,
                len(cmd.text),
            )

        if cmd.kind is CommandKind.BROADCAST:
            self._handle_broadcast(conn, cmd.text, outbound)
        elif cmd.kind is CommandKind.RENAME:
            self._handle_rename(conn, cmd.text, outbound)
        elif cmd.kind is CommandKind.LIST_ROOMS:
            self._handle_list_rooms(conn, outbound)
        elif cmd.kind is CommandKind.CHANGE_ROOM:
            self._handle_change_room(conn, cmd.text, outbound)
        elif cmd.kind is CommandKind.LIST_USERS:
            self._handle_list_users(conn, outbound)
        elif cmd.kind is CommandKind.ADMIN:
            self.hub.command_handler.handle_admin(conn, cmd.text, outbound)

    def _handle_broadcast(self, conn: Connection, text: str, outbound: Outbound) -> None:
        if not text.strip():
            return

        limit = int(self.hub.config.max_msg_body_bytes)
        size = len(text.encode("utf-8"))
        if limit > 0 and size > limit:
            outbound.system(conn, f"message too long ({size} > {limit} bytes)")
            return

        user = self.hub.registry.get(conn)
        if user is None:
            return

        event = ChatEvent(sender_id=user.nick, text=text)
        self.hub.rooms.append(user.room, event)
        self.hub.sink.append(user.room, event)
        self.hub.fanout.broadcast(user.room, event, outbound)

    def _handle_rename(self, conn: Connection, requested: str, outbound: Outbound) -> None:
        old = self.hub.registry.get(conn)
        status, nick = self.hub.registry.claim_nick(conn, requested, self.hub.nick_map)

        if status is NickStatus.OK:
            outbound.system(conn, f"nick set: {nick}")
            self.log.info(
                "Nick changed conn=%s old=%s new=%s",
                conn.label,
                old.nick if old else None,
                nick,
            )
        elif status is NickStatus.USED:
            outbound.system(conn, f"nick in use: {nick}")
            self.log.debug("Nick in use conn=%s nick=%s", conn.label, nick)
        else:
            outbound.system(conn, f"invalid nick: {nick}")
            self.log.debug("Invalid nick conn=%s nick=%r", conn.label, nick)

    def _handle_list_rooms(self, conn: Connection, outbound: Outbound) -> None:
        user = self.hub.registry.get(conn)
        if user is None:
            return
        available = ", ".join(self.hub.rooms.names())
        outbound.system(conn, f"connected to: {user.room}, available: {available}")

    def _handle_change_room(self, conn: Connection, target: str, outbound: Outbound) -> None:
        room = target.strip()
        if not self.hub.rooms.exists(room):
            outbound.system(conn, f"unchanged, invalid room: {room}")
            return

        user = self.hub.registry.update(conn, lambda u: replace(u, room=room))
        if user is None:
            return

        outbound.system(conn, f"connected to: {room}")
        for ev in self.hub.rooms.recent(room):
            outbound.to(conn, ev)
        self.log.info("Room changed conn=%s nick=%s room=%s", conn.label, user.nick, room)

    def _handle_list_users(self, conn: Connection, outbound: Outbound) -> None:
        user = self.hub.registry.get(conn)
        if user is None:
            return
        nicks = [u.nick for _c, u in self.hub.registry.members(user.room)]
        outbound.system(conn, f"users in {user.room}: {', '.join(nicks)}")
