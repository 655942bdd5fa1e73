import uuid
from uuid import UUID

from faker import Faker
from sqlalchemy.orm import Session

from app.chat.models import ChatUser, Conversation, Message, MessageStatus
from app.chat.models.conversation import canonical_pair
from app.chat.schemas.identity import Identity
from app.core.datetime_utils import utcnow

fake = Faker()


def create_identity(
    user_id: str | None = None,
    email: str | None = None,
    is_admin: bool = False,
) -> Identity:
    """Identity as the resolver would return it; nothing is stored."""
    return Identity(
        id=user_id or str(uuid.uuid4()),
        email=email or fake.email(),
        is_admin=is_admin,
    )


def create_chat_user_factory(
    db_session: Session,
    user_id: str | None = None,
    email: str | None = None,
) -> ChatUser:
    now = utcnow()
    user = ChatUser(
        id=user_id or str(uuid.uuid4()),
        email=email or fake.email(),
        created_at=now,
        last_seen_at=now,
    )

    db_session.add(user)
    db_session.commit()

    return user


def create_conversation_factory(db_session: Session, user_a: str, user_b: str) -> Conversation:
    a, b = canonical_pair(user_a, user_b)
    conversation = Conversation(id=uuid.uuid4(), participant_a_id=a, participant_b_id=b)

    db_session.add(conversation)
    db_session.commit()

    return conversation


def create_message_factory(
    db_session: Session,
    conversation_id: UUID,
    sender_id: str,
    receiver_id: str,
    content: str | None = None,
    status: MessageStatus = MessageStatus.SENT,
) -> Message:
    """
    Factory function to insert a message directly, bypassing the store.

    Args:
        db_session: Database session
        conversation_id: Conversation the message belongs to
        sender_id: Author
        receiver_id: The other participant
        content: Text (random sentence if None)
        status: Initial delivery status

    Returns:
        Created Message instance
    """
    message = Message(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content or fake.sentence(),
        status=status.value,
        created_at=utcnow(),
        is_deleted=False,
    )

    db_session.add(message)
    db_session.commit()

    return message
