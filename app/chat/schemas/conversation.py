from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.datetime_utils import UTCDatetime


class ConversationCreate(BaseModel):
    # Admin picks the user to talk to; regular users always reach support
    user_id: str | None = Field(None, min_length=1, max_length=64)


class ConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    participant_a_id: str
    participant_b_id: str
    created_at: UTCDatetime
    last_message_at: UTCDatetime | None = None


class ConversationSummary(BaseModel):
    id: UUID
    other_user_id: str
    other_user_email: str | None = None
    unread_count: int = 0
    last_message: str = ""
    last_message_time: UTCDatetime | None = None
    last_message_is_from_me: bool = False
    created_at: UTCDatetime
    last_message_at: UTCDatetime | None = None


class ConversationListResponse(BaseModel):
    ok: bool = True
    conversations: list[ConversationSummary]


class ConversationEnvelope(BaseModel):
    ok: bool = True
    conversation: ConversationResponse
