from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.datetime_utils import utcnow
from app.db.session import Base


class ChatUser(Base):
    """Directory entry for an identity that has signed in at least once.

    Identities belong to the external provider; this table only mirrors
    what the chat needs to find the support account and list users.
    """

    __tablename__ = "chat_users"
    __table_args__ = (Index("ix_chat_users_email", "email"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
