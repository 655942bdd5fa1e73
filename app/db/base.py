"""
Database base module - imports all models for Alembic migration detection.

While the imports appear unused, they register every table on
``Base.metadata``, which Alembic autogenerate and the test fixtures rely on.
"""

from app.chat.models.chat_user import ChatUser
from app.chat.models.conversation import Conversation
from app.chat.models.message import Message
from app.db.session import Base

# Export all models for Alembic
__all__ = [
    "Base",
    "ChatUser",
    "Conversation",
    "Message",
]
