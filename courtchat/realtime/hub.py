import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from courtchat.realtime.events import ServerEvent, build_frame
from courtchat.schemas.events import PresencePayload

logger = logging.getLogger(__name__)

FrameSender = Callable[[dict[str, Any]], Awaitable[None]]


class Connection:
    """One authenticated realtime session of a user (a device or a tab)."""

    def __init__(self, user_id: UUID, send: FrameSender):
        self.id = uuid4().hex
        self.user_id = user_id
        self.rooms: set[str] = set()
        self._send = send
        self._send_lock = asyncio.Lock()

    async def send(self, frame: dict[str, Any]) -> None:
        # Frames from concurrent handlers must not interleave on one socket
        async with self._send_lock:
            await self._send(frame)

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id} rooms={len(self.rooms)}>"


class RealtimeHub:
    """
    In-process registry of live connections.

    Rooms group the connections subscribed to one conversation. Every user
    also has a personal channel made of all of their connections, which is
    how list-level updates reach screens that have not joined a room.
    Room membership belongs to a connection and is discarded with it.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._users: dict[UUID, set[str]] = {}

    def register(self, user_id: UUID, send: FrameSender) -> Connection:
        connection = Connection(user_id, send)
        self._connections[connection.id] = connection
        self._users.setdefault(user_id, set()).add(connection.id)
        logger.info("Realtime connection %s opened for user %s", connection.id, user_id)
        return connection

    def unregister(self, connection: Connection) -> bool:
        """Forget a connection. Returns True when it was the user's last one."""
        if self._connections.pop(connection.id, None) is None:
            return False
        for room in list(connection.rooms):
            self._discard_member(room, connection.id)
        connection.rooms.clear()
        went_offline = False
        user_connections = self._users.get(connection.user_id)
        if user_connections is not None:
            user_connections.discard(connection.id)
            if not user_connections:
                del self._users[connection.user_id]
                went_offline = True
        logger.info("Realtime connection %s closed for user %s", connection.id, connection.user_id)
        return went_offline

    async def connect(self, user_id: UUID, send: FrameSender) -> Connection:
        """Register a connection and announce the user if it is their first one."""
        first = not self.is_online(user_id)
        connection = self.register(user_id, send)
        if first:
            await self._announce(ServerEvent.USER_ONLINE, user_id)
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Unregister a connection and announce the user once their last one is gone."""
        if self.unregister(connection):
            await self._announce(ServerEvent.USER_OFFLINE, connection.user_id)

    async def _announce(self, event: ServerEvent, user_id: UUID) -> None:
        await self.emit(
            event,
            PresencePayload(user_id=user_id).to_wire(),
            everyone=True,
            exclude_user=user_id,
        )

    def join(self, connection: Connection, room: str) -> None:
        if connection.id not in self._connections:
            return
        self._rooms.setdefault(room, set()).add(connection.id)
        connection.rooms.add(room)

    def leave(self, connection: Connection, room: str) -> None:
        self._discard_member(room, connection.id)
        connection.rooms.discard(room)

    def is_member(self, connection: Connection, room: str) -> bool:
        return connection.id in self._rooms.get(room, ())

    def is_online(self, user_id: UUID) -> bool:
        return bool(self._users.get(user_id))

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def _discard_member(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]

    def _targets(
        self,
        rooms: Iterable[str],
        users: Iterable[UUID],
        exclude_user: UUID | None,
        everyone: bool = False,
    ) -> list[Connection]:
        ids: set[str] = set(self._connections) if everyone else set()
        for room in rooms:
            ids.update(self._rooms.get(room, ()))
        for user_id in users:
            ids.update(self._users.get(user_id, ()))
        targets = [self._connections[cid] for cid in ids if cid in self._connections]
        if exclude_user is not None:
            targets = [conn for conn in targets if conn.user_id != exclude_user]
        return targets

    async def emit(
        self,
        event: str | Enum,
        data: Any,
        *,
        rooms: Iterable[str] = (),
        users: Iterable[UUID] = (),
        exclude_user: UUID | None = None,
        everyone: bool = False,
    ) -> int:
        """
        Deliver one event to every connection in the given rooms and personal
        channels, or to every live connection with ``everyone``. A connection
        reached through several targets receives it once.
        Returns the number of connections the frame was written to.
        """
        frame = build_frame(event, data)
        delivered = 0
        for connection in self._targets(rooms, users, exclude_user, everyone):
            if connection.id not in self._connections:
                # Dropped while announcing an earlier failure
                continue
            try:
                await connection.send(frame)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Dropping connection %s after failed send of %s: %s",
                    connection.id,
                    frame["event"],
                    e,
                )
                await self.disconnect(connection)
        return delivered
