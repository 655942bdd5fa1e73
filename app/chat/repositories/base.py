"""Persistence interfaces for the chat.

The services only talk to these interfaces. One implementation is chosen
when the runtime is built (:mod:`app.chat.repositories.sql` for the
database, :mod:`app.chat.repositories.memory` for development and tests)
and injected; nothing downstream asks which one it got.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from app.chat.models import ChatUser, Conversation, Message, MessageStatus


class ConversationRepository(ABC):
    @abstractmethod
    def get(self, conversation_id: UUID) -> Conversation | None: ...

    @abstractmethod
    def find_by_pair(self, user_a: str, user_b: str) -> Conversation | None: ...

    @abstractmethod
    def get_or_create(self, user_a: str, user_b: str) -> Conversation:
        """Return the single conversation of an unordered pair.

        Concurrent callers for the same pair, in either order, must all
        receive the same row.
        """

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Conversation]: ...

    @abstractmethod
    def list_all(self) -> list[Conversation]: ...

    @abstractmethod
    def count(self) -> int: ...


class MessageRepository(ABC):
    @abstractmethod
    def append(
        self, conversation: Conversation, sender_id: str, receiver_id: str, content: str
    ) -> Message:
        """Insert a ``sent`` message and advance ``last_message_at`` atomically."""

    @abstractmethod
    def get(self, message_id: UUID) -> Message | None: ...

    @abstractmethod
    def list_for_conversation(self, conversation_id: UUID) -> list[Message]:
        """Non-deleted messages, oldest first."""

    @abstractmethod
    def last_for_conversation(self, conversation_id: UUID) -> Message | None: ...

    @abstractmethod
    def count_unread(self, conversation_id: UUID | None = None, receiver_id: str | None = None) -> int:
        """Non-deleted messages whose status is not yet ``read``."""

    @abstractmethod
    def advance_status(self, message_id: UUID, target: MessageStatus) -> Message | None:
        """Move one message forward to ``target`` if it is behind it.

        Returns the updated message, or None when nothing changed (already
        at or past ``target``, deleted, or unknown).
        """

    @abstractmethod
    def mark_delivered_for_receiver(self, conversation_id: UUID, receiver_id: str) -> list[Message]:
        """Bulk ``sent -> delivered`` for one receiver; returns what changed."""

    @abstractmethod
    def soft_delete(self, message_id: UUID) -> bool: ...

    @abstractmethod
    def count(self) -> int: ...


class ChatUserRepository(ABC):
    @abstractmethod
    def upsert(self, user_id: str, email: str, seen_at: datetime) -> ChatUser: ...

    @abstractmethod
    def get(self, user_id: str) -> ChatUser | None: ...

    @abstractmethod
    def find_by_email(self, email: str) -> ChatUser | None: ...

    @abstractmethod
    def list_all(self, exclude_email: str | None = None) -> list[ChatUser]:
        """Newest first."""


class ChatRepositories:
    """The three repositories a unit of chat work needs, sharing one session."""

    def __init__(
        self,
        conversations: ConversationRepository,
        messages: MessageRepository,
        users: ChatUserRepository,
    ) -> None:
        self.conversations = conversations
        self.messages = messages
        self.users = users
