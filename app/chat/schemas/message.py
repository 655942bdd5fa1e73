from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.datetime_utils import UTCDatetime


class MessageCreate(BaseModel):
    conversation_id: UUID
    # Accepted for compatibility; the receiver is derived from the conversation
    receiver_id: str | None = Field(None, max_length=64)
    # Trimmed and checked against MESSAGE_MAX_LENGTH by the store
    message: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    sender_id: str
    receiver_id: str
    content: str
    status: str
    created_at: UTCDatetime
    delivered_at: UTCDatetime | None = None
    read_at: UTCDatetime | None = None


class MessageListResponse(BaseModel):
    ok: bool = True
    messages: list[MessageResponse]


class MessageEnvelope(BaseModel):
    ok: bool = True
    message: MessageResponse
