"""Conversation identity and the one access predicate the chat uses."""

import logging
from uuid import UUID

from app.chat.models import Conversation
from app.chat.repositories.base import ChatRepositories
from app.chat.schemas.conversation import ConversationSummary
from app.chat.schemas.identity import Identity
from app.core.config import Settings, settings
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


class ConversationDirectory:
    """Owns conversation rows and decides who may see them.

    :meth:`can_access` is the only authorization check for conversations;
    the message store, REST routes and the realtime gateway all go
    through it (usually via :meth:`get_for`).
    """

    def __init__(self, repos: ChatRepositories, config: Settings = settings) -> None:
        self.repos = repos
        self.config = config

    def get_or_create(self, user_a: str, user_b: str) -> Conversation:
        if not user_a or not user_b:
            raise ValidationError("Both participants are required", field="user_id")
        if user_a == user_b:
            raise ValidationError("Cannot chat with yourself", field="user_id")
        return self.repos.conversations.get_or_create(user_a, user_b)

    def list_for(self, identity: Identity) -> list[Conversation]:
        if identity.is_admin:
            return self.repos.conversations.list_all()
        return self.repos.conversations.list_for_user(identity.id)

    def can_access(self, identity: Identity, conversation_id: UUID) -> bool:
        conversation = self.repos.conversations.get(conversation_id)
        return conversation is not None and conversation.has_participant(identity.id)

    def get(self, conversation_id: UUID) -> Conversation:
        conversation = self.repos.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", resource="conversation")
        return conversation

    def get_for(self, identity: Identity, conversation_id: UUID) -> Conversation:
        """Fetch a conversation the caller participates in."""
        conversation = self.get(conversation_id)
        if not conversation.has_participant(identity.id):
            logger.warning(
                "User %s denied access to conversation %s", identity.id, conversation_id
            )
            raise ForbiddenError("Access denied")
        return conversation

    def start_for(self, identity: Identity, target_user_id: str | None = None) -> Conversation:
        """Open the caller's conversation for the REST surface.

        Regular users always reach the support account. The admin names the
        user to talk to; that user must have signed in at least once.
        """
        if target_user_id is not None and target_user_id == identity.id:
            raise ValidationError("Cannot chat with yourself", field="user_id")

        if identity.is_admin:
            if target_user_id is None:
                raise ValidationError("user_id is required", field="user_id")
            if self.repos.users.get(target_user_id) is None:
                raise NotFoundError("Selected user not found", resource="user")
            return self.get_or_create(identity.id, target_user_id)

        support = self.repos.users.find_by_email(self.config.ADMIN_EMAIL)
        if support is None:
            raise NotFoundError("Support account not available", resource="user")
        return self.get_or_create(identity.id, support.id)

    def summaries_for(self, identity: Identity) -> list[ConversationSummary]:
        return [self._summarize(c, identity) for c in self.list_for(identity)]

    def _summarize(self, conversation: Conversation, identity: Identity) -> ConversationSummary:
        # An admin browsing someone else's thread sees it from participant A's side
        viewer = (
            identity.id
            if conversation.has_participant(identity.id)
            else conversation.participant_a_id
        )
        other_id = conversation.other_participant(viewer)
        other = self.repos.users.get(other_id)
        last = self.repos.messages.last_for_conversation(conversation.id)

        return ConversationSummary(
            id=conversation.id,
            other_user_id=other_id,
            other_user_email=other.email if other else None,
            unread_count=self.repos.messages.count_unread(conversation.id, receiver_id=identity.id),
            last_message=last.content[:PREVIEW_LENGTH] if last else "",
            last_message_time=last.created_at if last else None,
            last_message_is_from_me=bool(last and last.sender_id == identity.id),
            created_at=conversation.created_at,
            last_message_at=conversation.last_message_at,
        )
