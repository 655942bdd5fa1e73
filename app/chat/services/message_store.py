import logging
from uuid import UUID

from app.chat.models import Message, MessageStatus
from app.chat.repositories.base import ChatRepositories
from app.chat.schemas.admin import ChatStats
from app.chat.schemas.identity import Identity
from app.chat.services.conversation_directory import ConversationDirectory
from app.core.config import Settings, settings
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class MessageStore:
    """Append-only message log with a forward-only status field.

    Messages are never edited. The only mutations are the status moving
    from ``sent`` to ``delivered`` to ``read`` (by the receiver) and a soft
    delete (by the sender).
    """

    def __init__(
        self,
        repos: ChatRepositories,
        directory: ConversationDirectory,
        config: Settings = settings,
    ) -> None:
        self.repos = repos
        self.directory = directory
        self.config = config

    def append(
        self,
        sender_id: str,
        conversation_id: UUID,
        text: str,
        asserted_receiver_id: str | None = None,
    ) -> Message:
        conversation = self.directory.get(conversation_id)
        if not conversation.has_participant(sender_id):
            logger.warning("User %s tried to post in conversation %s", sender_id, conversation_id)
            raise ForbiddenError("Access denied")

        receiver_id = conversation.other_participant(sender_id)
        if asserted_receiver_id is not None and asserted_receiver_id != receiver_id:
            logger.warning(
                "Rejected message from %s: receiver %s is not the other participant of %s",
                sender_id,
                asserted_receiver_id,
                conversation_id,
            )
            raise ForbiddenError("Receiver is not part of this conversation")

        content = (text or "").strip()
        if not content:
            raise ValidationError("Message cannot be empty", field="message")
        if len(content) > self.config.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Message cannot exceed {self.config.MESSAGE_MAX_LENGTH} characters",
                field="message",
            )

        return self.repos.messages.append(conversation, sender_id, receiver_id, content)

    def list_for(self, identity: Identity, conversation_id: UUID) -> tuple[list[Message], list[Message]]:
        """Backlog of a conversation plus the messages it just marked delivered.

        Fetching the backlog counts as delivery for everything addressed to
        the caller that was still ``sent``.
        """
        self.directory.get_for(identity, conversation_id)
        delivered = self.repos.messages.mark_delivered_for_receiver(conversation_id, identity.id)
        messages = self.repos.messages.list_for_conversation(conversation_id)
        return messages, delivered

    def mark_delivered(self, receiver_id: str, message_id: UUID) -> Message | None:
        """Live-delivery transition; None when the message was already past ``sent``."""
        message = self.repos.messages.get(message_id)
        if message is None or message.receiver_id != receiver_id:
            return None
        return self.repos.messages.advance_status(message_id, MessageStatus.DELIVERED)

    def mark_read(self, identity: Identity, message_id: UUID) -> tuple[Message, bool]:
        """Returns the message and whether this call moved it to ``read``."""
        message = self._get_live(message_id)
        if message.receiver_id != identity.id:
            raise ForbiddenError("Only the receiver can mark a message as read")

        updated = self.repos.messages.advance_status(message_id, MessageStatus.READ)
        if updated is not None:
            return updated, True
        # Lost to a concurrent read or already read; report the current row
        return self._get_live(message_id), False

    def soft_delete(self, identity: Identity, message_id: UUID) -> Message | None:
        """Hide a message; returns it when this call deleted it."""
        message = self.repos.messages.get(message_id)
        if message is None:
            raise NotFoundError("Message not found", resource="message")
        if message.sender_id != identity.id:
            raise ForbiddenError("Only the sender can delete a message")
        if not self.repos.messages.soft_delete(message_id):
            return None
        return self.repos.messages.get(message_id)

    def stats(self, active_users: int = 0) -> ChatStats:
        return ChatStats(
            total_conversations=self.repos.conversations.count(),
            total_messages=self.repos.messages.count(),
            unread_messages=self.repos.messages.count_unread(),
            active_users=active_users,
        )

    def _get_live(self, message_id: UUID) -> Message:
        message = self.repos.messages.get(message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found", resource="message")
        return message
