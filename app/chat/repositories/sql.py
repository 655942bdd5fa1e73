import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.chat.models import ChatUser, Conversation, Message, MessageStatus
from app.chat.models.conversation import canonical_pair
from app.chat.repositories.base import (
    ChatRepositories,
    ChatUserRepository,
    ConversationRepository,
    MessageRepository,
)
from app.core.datetime_utils import utcnow
from app.core.repository import BaseRepository

logger = logging.getLogger(__name__)


class SqlConversationRepository(BaseRepository[Conversation], ConversationRepository):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Conversation)

    def get(self, conversation_id: UUID) -> Conversation | None:
        return self.get_by_id(conversation_id, refresh=True)

    def find_by_pair(self, user_a: str, user_b: str) -> Conversation | None:
        a, b = canonical_pair(user_a, user_b)
        return self.db.scalars(
            select(Conversation).where(
                Conversation.participant_a_id == a,
                Conversation.participant_b_id == b,
            )
        ).first()

    def get_or_create(self, user_a: str, user_b: str) -> Conversation:
        a, b = canonical_pair(user_a, user_b)
        existing = self.find_by_pair(a, b)
        if existing is not None:
            return existing

        conversation = Conversation(participant_a_id=a, participant_b_id=b)
        try:
            # The savepoint keeps a lost race from rolling back the outer transaction
            with self.db.begin_nested():
                self.db.add(conversation)
        except IntegrityError:
            logger.info("Concurrent create for pair %s/%s, reusing existing row", a, b)
            winner = self.find_by_pair(a, b)
            if winner is None:
                raise
            return winner

        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def list_for_user(self, user_id: str) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .where(
                or_(
                    Conversation.participant_a_id == user_id,
                    Conversation.participant_b_id == user_id,
                )
            )
            .order_by(
                Conversation.last_message_at.desc().nulls_last(), Conversation.created_at.desc()
            )
        )
        return list(self.db.scalars(stmt))

    def list_all(self) -> list[Conversation]:
        stmt = select(Conversation).order_by(
            Conversation.last_message_at.desc().nulls_last(), Conversation.created_at.desc()
        )
        return list(self.db.scalars(stmt))

    def count(self) -> int:  # type: ignore[override]
        return super().count()


class SqlMessageRepository(BaseRepository[Message], MessageRepository):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Message)

    def append(
        self, conversation: Conversation, sender_id: str, receiver_id: str, content: str
    ) -> Message:
        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            status=MessageStatus.SENT.value,
            created_at=now,
        )
        self.db.add(message)
        # Only moves forward, even if a slower writer commits after a newer one
        self.db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation.id,
                or_(Conversation.last_message_at.is_(None), Conversation.last_message_at < now),
            )
            .values(last_message_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(message)
        return message

    def get(self, message_id: UUID) -> Message | None:
        return self.get_by_id(message_id, refresh=True)

    def list_for_conversation(self, conversation_id: UUID) -> list[Message]:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.is_deleted.is_(False))
            .order_by(Message.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(self.db.scalars(stmt))

    def last_for_conversation(self, conversation_id: UUID) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.is_deleted.is_(False))
            .order_by(Message.created_at.desc())
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def count_unread(self, conversation_id: UUID | None = None, receiver_id: str | None = None) -> int:
        criteria = [Message.is_deleted.is_(False), Message.status != MessageStatus.READ.value]
        if conversation_id is not None:
            criteria.append(Message.conversation_id == conversation_id)
        if receiver_id is not None:
            criteria.append(Message.receiver_id == receiver_id)
        return super().count(*criteria)

    def advance_status(self, message_id: UUID, target: MessageStatus) -> Message | None:
        behind = [s.value for s in MessageStatus if s.can_advance_to(target)]
        now = utcnow()
        values: dict[str, object] = {"status": target.value}
        if target is MessageStatus.DELIVERED:
            values["delivered_at"] = now
        elif target is MessageStatus.READ:
            values["read_at"] = now
            values["delivered_at"] = func.coalesce(Message.delivered_at, now)

        changed = self.db.scalars(
            update(Message)
            .where(
                Message.id == message_id,
                Message.status.in_(behind),
                Message.is_deleted.is_(False),
            )
            .values(**values)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        ).first()
        self.db.commit()
        if changed is None:
            return None
        return self.get_by_id(message_id, refresh=True)

    def mark_delivered_for_receiver(self, conversation_id: UUID, receiver_id: str) -> list[Message]:
        changed_ids = list(
            self.db.scalars(
                update(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.receiver_id == receiver_id,
                    Message.status == MessageStatus.SENT.value,
                    Message.is_deleted.is_(False),
                )
                .values(status=MessageStatus.DELIVERED.value, delivered_at=utcnow())
                .returning(Message.id)
                .execution_options(synchronize_session=False)
            )
        )
        self.db.commit()
        if not changed_ids:
            return []
        stmt = (
            select(Message)
            .where(Message.id.in_(changed_ids))
            .order_by(Message.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(self.db.scalars(stmt))

    def soft_delete(self, message_id: UUID) -> bool:
        result = self.db.execute(
            update(Message)
            .where(Message.id == message_id, Message.is_deleted.is_(False))
            .values(is_deleted=True, deleted_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return bool(result.rowcount)  # type: ignore[attr-defined]

    def count(self) -> int:  # type: ignore[override]
        return super().count(Message.is_deleted.is_(False))


class SqlChatUserRepository(BaseRepository[ChatUser], ChatUserRepository):
    def __init__(self, db: Session) -> None:
        super().__init__(db, ChatUser)

    def upsert(self, user_id: str, email: str, seen_at: datetime) -> ChatUser:
        user = self.get_by_id(user_id)
        if user is None:
            user = ChatUser(id=user_id, email=email, created_at=seen_at, last_seen_at=seen_at)
            try:
                with self.db.begin_nested():
                    self.db.add(user)
            except IntegrityError:
                user = self.get_by_id(user_id, refresh=True)
                if user is None:
                    raise
                user.email = email
                user.last_seen_at = seen_at
        else:
            user.email = email
            user.last_seen_at = seen_at
        self.db.commit()
        return user

    def get(self, user_id: str) -> ChatUser | None:
        return self.get_by_id(user_id)

    def find_by_email(self, email: str) -> ChatUser | None:
        return self.db.scalars(
            select(ChatUser)
            .where(func.lower(ChatUser.email) == email.strip().lower())
            .order_by(ChatUser.created_at.asc())
        ).first()

    def list_all(self, exclude_email: str | None = None) -> list[ChatUser]:
        stmt = select(ChatUser).order_by(ChatUser.created_at.desc())
        if exclude_email:
            stmt = stmt.where(func.lower(ChatUser.email) != exclude_email.strip().lower())
        return list(self.db.scalars(stmt))


def sql_repositories(db: Session) -> ChatRepositories:
    return ChatRepositories(
        conversations=SqlConversationRepository(db),
        messages=SqlMessageRepository(db),
        users=SqlChatUserRepository(db),
    )
