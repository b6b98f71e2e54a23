from __future__ import annotations

import logging
import os
import signal
import threading
import time
from collections.abc import Mapping
from types import MappingProxyType

import RNS

from .codec import encode
from .commands import CommandHandler
from .config import HubRuntimeConfig
from .connection import CloseReason, Connection
from .fanout import BroadcastFanout, Outbound
from .messages import Command, decode_command
from .nicks import load_nick_map
from .registry import ConnectionRegistry, User
from .rooms import RoomDirectory
from .router import MessageRouter
from .store import HistorySink, NullHistorySink, SqliteHistoryStore
from .transport import LinkConnection, fmt_link_id
from .util import expand_path


class HubService:
    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("rchat.hub")

        # The registry and room directory are touched from every connection's
        # reader thread and from Reticulum callbacks. One re-entrant lock
        # guards both.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        self.registry = ConnectionRegistry(self)
        self.rooms = RoomDirectory(self)
        self.fanout = BroadcastFanout(self.registry)
        self.router = MessageRouter(self)
        self.command_handler = CommandHandler(self)

        self.sink: HistorySink = NullHistorySink()
        self.nick_map: Mapping[str, str] = MappingProxyType({})

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

        self._connections: set[Connection] = set()
        self._announce_thread: threading.Thread | None = None

    def start(self) -> None:
        self.load_state()

        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="rchat-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.log.info(
            "Hub running dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
        )
        self.log.info(
            "Policy default_room=%s history_len=%s nick_max_chars=%s max_msg_body_bytes=%s",
            self.config.default_room,
            self.config.history_len,
            self.config.nick_max_chars,
            self.config.max_msg_body_bytes,
        )

    def load_state(self) -> None:
        """Load the nick map, history store and rooms. No network I/O."""
        self.nick_map = load_nick_map(self.config.nick_map_path)
        admin = self.config.admin_nick
        if admin and admin not in self.nick_map:
            self.log.warning(
                "Admin nick %r has no password in the nick map; anyone can claim it",
                admin,
            )

        if self.config.history_db_path:
            self.sink = SqliteHistoryStore(self.config.history_db_path)

        names: list[str] = list(self.config.initial_rooms)
        created: dict[str, float] = {}
        reg_path = self.rooms.get_registry_path_for_writes()
        if reg_path:
            created, err = self.rooms.load_registry_from_path(reg_path)
            if err:
                self.log.warning("Room registry not loaded: %s", err)
            names.extend(created)

        history = {
            name: self.sink.load_recent(name, self.config.history_len) for name in names
        }
        self.rooms.load(names, history, created=created)
        self.log.info("Rooms loaded: %s", ", ".join(self.rooms.names()))

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "rchat", "v": 1, "hub": self.config.hub_name})
            )
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        period = float(self.config.announce_period_s)
        while not self._shutdown.wait(period):
            self._announce_once()

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self._shutdown.set())
        signal.signal(signal.SIGTERM, lambda *_: self._shutdown.set())

        while not self._shutdown.is_set():
            time.sleep(0.25)

        self.stop()

    def stop(self) -> None:
        """Drain outboxes within the grace period, then force-close."""
        self._shutdown.set()

        with self._state_lock:
            conns = list(self._connections)
        self.log.info("Shutting down, closing %d connection(s)", len(conns))

        for conn in conns:
            conn.close_after_flush(CloseReason.SHUTDOWN)

        deadline = time.monotonic() + float(self.config.shutdown_grace_s)
        for conn in conns:
            remaining = max(0.0, deadline - time.monotonic())
            if not conn.join(remaining):
                self.log.warning("Connection %s did not drain in time", conn.label)
                conn.close(CloseReason.SHUTDOWN)

        with self._state_lock:
            self.registry.clear_all()
            self._connections.clear()

        self.sink.close(timeout=float(self.config.shutdown_grace_s))

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def _on_link(self, link: RNS.Link) -> None:
        self.log.info("Link established link_id=%s", fmt_link_id(link))
        self.attach(LinkConnection(link))

    def attach(self, conn: Connection, *, start: bool = True) -> None:
        """Register a new connection in the default room and greet it.

        History replay and greeting are queued before the connection is
        visible to broadcasts finishing on other threads, so they arrive
        first.
        """
        if self._shutdown.is_set():
            self.log.info("Refusing connection %s during shutdown", conn.label)
            conn.close(CloseReason.SHUTDOWN)
            return

        outbound = Outbound()
        room = self.config.default_room
        with self._state_lock:
            self._connections.add(conn)
            self.registry.register(conn, User(room=room, nick=conn.default_nick))
            for ev in self.rooms.recent(room):
                outbound.to(conn, ev)
            if self.config.greeting:
                outbound.system(conn, self.config.greeting)
            outbound.flush()
            count = self.registry.count()

        self.log.info(
            "Connection accepted conn=%s nick=%s online=%d", conn.label, conn.default_nick, count
        )
        if start:
            conn.start(self._read_loop)

    def dispatch(self, conn: Connection, cmd: Command) -> None:
        """Apply one command and deliver its results."""
        outbound = Outbound()
        with self._state_lock:
            self.router.route(conn, cmd, outbound)
            outbound.flush()
        outbound.run_deferred(self.log)

    def _read_loop(self, conn: Connection) -> None:
        try:
            while True:
                data = conn.recv()
                if data is None:
                    break
                try:
                    cmd = decode_command(data)
                except (TypeError, ValueError) as e:
                    self.log.warning(
                        "Bad frame conn=%s bytes=%s err=%s", conn.label, len(data), e
                    )
                    conn.close(CloseReason.PROTOCOL_ERROR)
                    break
                self.dispatch(conn, cmd)
        except Exception:
            self.log.exception("Read loop failed conn=%s", conn.label)
            conn.close(CloseReason.TRANSPORT_ERROR)
        finally:
            self._on_close(conn)

    def _on_close(self, conn: Connection) -> None:
        with self._state_lock:
            user = self.registry.unregister(conn)
            self._connections.discard(conn)
            remaining = self.registry.count()

        reason = conn.close_reason or CloseReason.NORMAL
        log = self.log.info if reason.normal else self.log.warning
        log(
            "Connection closed conn=%s nick=%s reason=%s",
            conn.label,
            user.nick if user else None,
            reason.value,
        )
        self.log.info("Remaining connections: %d", remaining)
