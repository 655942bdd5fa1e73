"""Process-local repositories for development and tests.

Rows are plain (transient) ORM instances kept in dicts. A single lock
serializes every write, which gives the same guarantees the database
gets from its unique pair constraint and conditional updates.
"""

import threading
import uuid
from datetime import datetime
from uuid import UUID

from app.chat.models import ChatUser, Conversation, Message, MessageStatus
from app.chat.models.conversation import canonical_pair
from app.chat.repositories.base import (
    ChatRepositories,
    ChatUserRepository,
    ConversationRepository,
    MessageRepository,
)
from app.core.datetime_utils import utcnow


def _recency_key(conversation: Conversation) -> tuple[bool, datetime, datetime]:
    return (
        conversation.last_message_at is not None,
        conversation.last_message_at or datetime.min,
        conversation.created_at,
    )


class InMemoryChatData:
    """Shared tables; one instance lives as long as the chat runtime."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.conversations: dict[UUID, Conversation] = {}
        self.pairs: dict[tuple[str, str], UUID] = {}
        self.messages: dict[UUID, Message] = {}
        self.users: dict[str, ChatUser] = {}


class InMemoryConversationRepository(ConversationRepository):
    def __init__(self, data: InMemoryChatData) -> None:
        self._data = data

    def get(self, conversation_id: UUID) -> Conversation | None:
        return self._data.conversations.get(conversation_id)

    def find_by_pair(self, user_a: str, user_b: str) -> Conversation | None:
        conversation_id = self._data.pairs.get(canonical_pair(user_a, user_b))
        return self._data.conversations.get(conversation_id) if conversation_id else None

    def get_or_create(self, user_a: str, user_b: str) -> Conversation:
        key = canonical_pair(user_a, user_b)
        with self._data.lock:
            existing = self.find_by_pair(*key)
            if existing is not None:
                return existing
            conversation = Conversation(
                id=uuid.uuid4(),
                participant_a_id=key[0],
                participant_b_id=key[1],
                created_at=utcnow(),
                last_message_at=None,
            )
            self._data.conversations[conversation.id] = conversation
            self._data.pairs[key] = conversation.id
            return conversation

    def list_for_user(self, user_id: str) -> list[Conversation]:
        with self._data.lock:
            owned = [c for c in self._data.conversations.values() if c.has_participant(user_id)]
        return sorted(owned, key=_recency_key, reverse=True)

    def list_all(self) -> list[Conversation]:
        with self._data.lock:
            everything = list(self._data.conversations.values())
        return sorted(everything, key=_recency_key, reverse=True)

    def count(self) -> int:
        return len(self._data.conversations)


class InMemoryMessageRepository(MessageRepository):
    def __init__(self, data: InMemoryChatData) -> None:
        self._data = data

    def append(
        self, conversation: Conversation, sender_id: str, receiver_id: str, content: str
    ) -> Message:
        with self._data.lock:
            now = utcnow()
            message = Message(
                id=uuid.uuid4(),
                conversation_id=conversation.id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                status=MessageStatus.SENT.value,
                created_at=now,
                delivered_at=None,
                read_at=None,
                is_deleted=False,
                deleted_at=None,
            )
            self._data.messages[message.id] = message
            stored = self._data.conversations[conversation.id]
            if stored.last_message_at is None or stored.last_message_at < now:
                stored.last_message_at = now
            return message

    def get(self, message_id: UUID) -> Message | None:
        return self._data.messages.get(message_id)

    def _live(self, conversation_id: UUID) -> list[Message]:
        with self._data.lock:
            found = [
                m
                for m in self._data.messages.values()
                if m.conversation_id == conversation_id and not m.is_deleted
            ]
        return sorted(found, key=lambda m: m.created_at)

    def list_for_conversation(self, conversation_id: UUID) -> list[Message]:
        return self._live(conversation_id)

    def last_for_conversation(self, conversation_id: UUID) -> Message | None:
        live = self._live(conversation_id)
        return live[-1] if live else None

    def count_unread(self, conversation_id: UUID | None = None, receiver_id: str | None = None) -> int:
        with self._data.lock:
            return sum(
                1
                for m in self._data.messages.values()
                if not m.is_deleted
                and m.status != MessageStatus.READ.value
                and (conversation_id is None or m.conversation_id == conversation_id)
                and (receiver_id is None or m.receiver_id == receiver_id)
            )

    def _advance(self, message: Message, target: MessageStatus, now: datetime) -> bool:
        if message.is_deleted or not MessageStatus(message.status).can_advance_to(target):
            return False
        message.status = target.value
        if message.delivered_at is None:
            message.delivered_at = now
        if target is MessageStatus.READ:
            message.read_at = now
        return True

    def advance_status(self, message_id: UUID, target: MessageStatus) -> Message | None:
        with self._data.lock:
            message = self._data.messages.get(message_id)
            if message is None or not self._advance(message, target, utcnow()):
                return None
            return message

    def mark_delivered_for_receiver(self, conversation_id: UUID, receiver_id: str) -> list[Message]:
        with self._data.lock:
            now = utcnow()
            return [
                m
                for m in self._live(conversation_id)
                if m.receiver_id == receiver_id
                and m.status == MessageStatus.SENT.value
                and self._advance(m, MessageStatus.DELIVERED, now)
            ]

    def soft_delete(self, message_id: UUID) -> bool:
        with self._data.lock:
            message = self._data.messages.get(message_id)
            if message is None or message.is_deleted:
                return False
            message.is_deleted = True
            message.deleted_at = utcnow()
            return True

    def count(self) -> int:
        with self._data.lock:
            return sum(1 for m in self._data.messages.values() if not m.is_deleted)


class InMemoryChatUserRepository(ChatUserRepository):
    def __init__(self, data: InMemoryChatData) -> None:
        self._data = data

    def upsert(self, user_id: str, email: str, seen_at: datetime) -> ChatUser:
        with self._data.lock:
            user = self._data.users.get(user_id)
            if user is None:
                user = ChatUser(id=user_id, email=email, created_at=seen_at, last_seen_at=seen_at)
                self._data.users[user_id] = user
            else:
                user.email = email
                user.last_seen_at = seen_at
            return user

    def get(self, user_id: str) -> ChatUser | None:
        return self._data.users.get(user_id)

    def find_by_email(self, email: str) -> ChatUser | None:
        wanted = email.strip().lower()
        with self._data.lock:
            matches = [u for u in self._data.users.values() if u.email.lower() == wanted]
        return min(matches, key=lambda u: u.created_at) if matches else None

    def list_all(self, exclude_email: str | None = None) -> list[ChatUser]:
        excluded = exclude_email.strip().lower() if exclude_email else None
        with self._data.lock:
            users = [u for u in self._data.users.values() if u.email.lower() != excluded]
        return sorted(users, key=lambda u: u.created_at, reverse=True)


def memory_repositories(data: InMemoryChatData) -> ChatRepositories:
    return ChatRepositories(
        conversations=InMemoryConversationRepository(data),
        messages=InMemoryMessageRepository(data),
        users=InMemoryChatUserRepository(data),
    )
