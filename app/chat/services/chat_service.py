"""Async entry points shared by the REST routes and the realtime gateway.

Store work is synchronous SQLAlchemy code; it runs in the threadpool with
its own session per call. Every operation that changes a conversation
takes that conversation's lock for the write *and* the publish, so the
order clients see broadcasts in is the order the store committed them.
"""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar
from uuid import UUID

from starlette.concurrency import run_in_threadpool

from app.chat.models import Conversation, Message
from app.chat.schemas import events
from app.chat.schemas.admin import ChatStats
from app.chat.schemas.conversation import ConversationSummary
from app.chat.schemas.identity import Identity
from app.chat.services.conversation_directory import ConversationDirectory
from app.chat.services.message_store import MessageStore
from app.core.datetime_utils import utcnow
from app.core.exceptions import NotFoundError

if TYPE_CHECKING:
    from app.chat.models import ChatUser
    from app.chat.runtime import ChatRuntime

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChatService:
    def __init__(self, runtime: "ChatRuntime") -> None:
        self.runtime = runtime
        self.fanout = runtime.fanout
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()
        self._background: set[asyncio.Task[None]] = set()
        self.fanout.on_receiver_reached = self._schedule_live_delivery

    async def _run(self, work: Callable[[MessageStore], T]) -> T:
        def unit_of_work() -> T:
            with self.runtime.repositories() as repos:
                directory = ConversationDirectory(repos, self.runtime.config)
                return work(MessageStore(repos, directory, self.runtime.config))

        return await run_in_threadpool(unit_of_work)

    @asynccontextmanager
    async def _conversation_lock(self, conversation_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        async with lock:
            yield

    async def record_identity(self, identity: Identity) -> None:
        seen_at = utcnow()
        await self._run(lambda store: store.repos.users.upsert(identity.id, identity.email, seen_at))

    async def list_conversations(self, identity: Identity) -> list[ConversationSummary]:
        return await self._run(lambda store: store.directory.summaries_for(identity))

    async def open_conversation(self, identity: Identity, target_user_id: str | None) -> Conversation:
        conversation = await self._run(lambda store: store.directory.start_for(identity, target_user_id))
        logger.info("Conversation %s opened by %s", conversation.id, identity.id)
        return conversation

    async def can_join(self, identity: Identity, conversation_id: UUID) -> bool:
        return await self._run(lambda store: store.directory.can_access(identity, conversation_id))

    async def send_message(
        self,
        identity: Identity,
        conversation_id: UUID,
        text: str,
        receiver_id: str | None = None,
    ) -> Message:
        async with self._conversation_lock(conversation_id):
            message = await self._run(
                lambda store: store.append(identity.id, conversation_id, text, receiver_id)
            )
            await self.fanout.message_created(message, identity.email)
        logger.info("Message %s sent in %s", message.id, conversation_id)
        return message

    async def fetch_backlog(self, identity: Identity, conversation_id: UUID) -> list[Message]:
        async with self._conversation_lock(conversation_id):
            messages, delivered = await self._run(lambda store: store.list_for(identity, conversation_id))
            for message in delivered:
                await self.fanout.message_updated(events.MESSAGE_DELIVERED, message)
        return messages

    async def mark_read(self, identity: Identity, message_id: UUID) -> Message:
        conversation_id = await self._conversation_of(message_id)
        async with self._conversation_lock(conversation_id):
            message, changed = await self._run(lambda store: store.mark_read(identity, message_id))
            if changed:
                await self.fanout.message_updated(events.MESSAGE_READ, message)
        return message

    async def delete_message(self, identity: Identity, message_id: UUID) -> None:
        conversation_id = await self._conversation_of(message_id)
        async with self._conversation_lock(conversation_id):
            deleted = await self._run(lambda store: store.soft_delete(identity, message_id))
            if deleted is not None:
                await self.fanout.message_deleted(deleted)

    async def deliver_live(self, receiver_id: str, message_id: UUID, conversation_id: UUID) -> None:
        async with self._conversation_lock(conversation_id):
            message = await self._run(lambda store: store.mark_delivered(receiver_id, message_id))
            if message is not None:
                await self.fanout.message_updated(events.MESSAGE_DELIVERED, message)

    async def list_users(self) -> "list[ChatUser]":
        return await self._run(
            lambda store: store.repos.users.list_all(exclude_email=self.runtime.config.ADMIN_EMAIL)
        )

    async def stats(self) -> ChatStats:
        active = self.runtime.presence.active_users()
        return await self._run(lambda store: store.stats(active_users=active))

    async def _conversation_of(self, message_id: UUID) -> UUID:
        message = await self._run(lambda store: store.repos.messages.get(message_id))
        if message is None:
            raise NotFoundError("Message not found", resource="message")
        return message.conversation_id

    def _schedule_live_delivery(self, message_id: UUID, receiver_id: str, conversation_id: UUID) -> None:
        # Runs inside a broadcast that may hold this conversation's lock
        task = asyncio.create_task(self._deliver_live_logged(receiver_id, message_id, conversation_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver_live_logged(self, receiver_id: str, message_id: UUID, conversation_id: UUID) -> None:
        try:
            await self.deliver_live(receiver_id, message_id, conversation_id)
        except Exception:
            logger.exception("Live delivery update failed for message %s", message_id)

    async def wait_idle(self) -> None:
        """Wait for scheduled delivery updates; used on shutdown and in tests."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
