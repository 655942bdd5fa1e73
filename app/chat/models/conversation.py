import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.datetime_utils import utcnow
from app.db.session import Base


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    """Order a participant pair so that (a, b) and (b, a) share one key."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("participant_a_id", "participant_b_id", name="uq_conversation_pair"),
        Index("ix_conversations_participant_b", "participant_b_id"),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    participant_a_id: Mapped[str] = mapped_column(String(64))
    participant_b_id: Mapped[str] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, default=None)

    messages = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.created_at",
        cascade="all, delete-orphan",
    )

    @property
    def participant_ids(self) -> tuple[str, str]:
        return self.participant_a_id, self.participant_b_id

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participant_ids

    def other_participant(self, user_id: str) -> str:
        if user_id == self.participant_a_id:
            return self.participant_b_id
        if user_id == self.participant_b_id:
            return self.participant_a_id
        raise ValueError(f"{user_id} is not a participant of conversation {self.id}")
