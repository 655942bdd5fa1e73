"""Live connections and the rooms they joined.

Everything here runs on the event loop thread and never awaits while
mutating the maps, so no locking is needed.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

import structlog

from app.chat.schemas.identity import Identity

logger = structlog.get_logger(__name__)

Frame = dict[str, Any]
Sender = Callable[[Frame], Awaitable[None]]

OUTBOX_SIZE = 256


class ChatConnection:
    """One client socket with an ordered outbound queue.

    Frames are enqueued without waiting and written by a single writer
    task, so the order in which broadcasts are enqueued is the order the
    client receives them and a slow client never stalls a broadcast.
    """

    def __init__(self, send: Sender, outbox_size: int = OUTBOX_SIZE) -> None:
        self.id = uuid.uuid4().hex
        self.identity: Identity | None = None
        self.rooms: set[UUID] = set()
        self._send = send
        self._outbox: asyncio.Queue[Frame | None] = asyncio.Queue(maxsize=outbox_size)
        self._writer: asyncio.Task[None] | None = None

    @property
    def user_id(self) -> str | None:
        return self.identity.id if self.identity else None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name=f"chat-writer-{self.id}")

    def enqueue(self, frame: Frame) -> bool:
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("outbox_full_frame_dropped", connection_id=self.id, user_id=self.user_id)
            return False
        return True

    async def close(self) -> None:
        """Flush what is queued, then stop the writer."""
        if self._writer is None:
            return
        try:
            self._outbox.put_nowait(None)
        except asyncio.QueueFull:
            self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        self._writer = None

    async def _drain(self) -> None:
        while True:
            frame = await self._outbox.get()
            if frame is None:
                return
            try:
                await self._send(frame)
            except Exception as e:
                # The socket is gone; the receive loop will notice and clean up
                logger.info("connection_send_failed", connection_id=self.id, error=str(e))
                return


class ConnectionRegistry:
    def __init__(self) -> None:
        self._rooms: dict[UUID, set[ChatConnection]] = {}
        self._users: dict[str, set[ChatConnection]] = {}

    def register_user(self, connection: ChatConnection) -> None:
        if connection.user_id is None:
            raise ValueError("Connection is not authenticated")
        self._users.setdefault(connection.user_id, set()).add(connection)

    def join(self, connection: ChatConnection, conversation_id: UUID) -> None:
        self._rooms.setdefault(conversation_id, set()).add(connection)
        connection.rooms.add(conversation_id)

    def leave(self, connection: ChatConnection, conversation_id: UUID) -> None:
        members = self._rooms.get(conversation_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[conversation_id]
        connection.rooms.discard(conversation_id)

    def discard(self, connection: ChatConnection) -> None:
        for conversation_id in list(connection.rooms):
            self.leave(connection, conversation_id)
        if connection.user_id is not None:
            owned = self._users.get(connection.user_id)
            if owned is not None:
                owned.discard(connection)
                if not owned:
                    del self._users[connection.user_id]

    def is_member(self, connection: ChatConnection, conversation_id: UUID) -> bool:
        return connection in self._rooms.get(conversation_id, ())

    def room_members(self, conversation_id: UUID) -> list[ChatConnection]:
        return list(self._rooms.get(conversation_id, ()))

    def user_connections(self, user_id: str) -> list[ChatConnection]:
        return list(self._users.get(user_id, ()))

    def active_user_count(self) -> int:
        return len(self._users)
