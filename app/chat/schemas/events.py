"""Frames exchanged over the chat WebSocket.

Inbound frames form a closed union discriminated by ``type`` and are
validated before the gateway dispatches them. Outbound frames are plain
``{"event": name, "data": payload}`` dicts built by :func:`outbound`.
"""

from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


class AuthEvent(BaseModel):
    type: Literal["auth"]
    token: str = Field(..., min_length=1)


class JoinEvent(BaseModel):
    type: Literal["join_conversation"]
    conversation_id: UUID


class LeaveEvent(BaseModel):
    type: Literal["leave_conversation"]
    conversation_id: UUID


class SendEvent(BaseModel):
    type: Literal["message:send"]
    conversation_id: UUID
    message: str
    receiver_id: str | None = None


class ReadEvent(BaseModel):
    type: Literal["message:read"]
    message_id: UUID


class TypingEvent(BaseModel):
    type: Literal["typing", "stop_typing"]
    conversation_id: UUID


InboundEvent = Annotated[
    AuthEvent | JoinEvent | LeaveEvent | SendEvent | ReadEvent | TypingEvent,
    Field(discriminator="type"),
]

inbound_event_adapter: TypeAdapter[Any] = TypeAdapter(InboundEvent)


def parse_inbound(raw: str) -> AuthEvent | JoinEvent | LeaveEvent | SendEvent | ReadEvent | TypingEvent:
    """Validate a raw text frame; raises ``pydantic.ValidationError``."""
    result: AuthEvent | JoinEvent | LeaveEvent | SendEvent | ReadEvent | TypingEvent = (
        inbound_event_adapter.validate_json(raw)
    )
    return result


# Outbound event names
AUTH_SUCCESS = "auth_success"
AUTH_ERROR = "auth_error"
JOINED = "joined"
LEFT = "left"
ERROR = "error"
MESSAGE_SENT = "message:sent"
MESSAGE_NEW = "message:new"
MESSAGE_DELIVERED = "message:delivered"
MESSAGE_READ = "message:read"
MESSAGE_DELETED = "message:deleted"
MESSAGE_NOTIFICATION = "message:notification"
TYPING = "typing"
STOP_TYPING = "stop_typing"


def outbound(event: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"event": event, "data": data}
