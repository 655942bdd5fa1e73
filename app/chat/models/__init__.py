from app.chat.models.chat_user import ChatUser
from app.chat.models.conversation import Conversation
from app.chat.models.message import Message, MessageStatus

__all__ = ["ChatUser", "Conversation", "Message", "MessageStatus"]
