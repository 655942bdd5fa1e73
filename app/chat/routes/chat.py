from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from app.chat.dependencies import get_chat_service, get_current_identity
from app.chat.schemas.conversation import (
    ConversationCreate,
    ConversationEnvelope,
    ConversationListResponse,
    ConversationResponse,
)
from app.chat.schemas.identity import Identity
from app.chat.schemas.message import (
    MessageCreate,
    MessageEnvelope,
    MessageListResponse,
    MessageResponse,
)
from app.chat.services.chat_service import ChatService

router = APIRouter()


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> ConversationListResponse:
    """Conversations of the caller; the admin sees every conversation."""
    summaries = await service.list_conversations(identity)
    return ConversationListResponse(conversations=summaries)


@router.post("/conversations", response_model=ConversationEnvelope)
async def open_conversation(
    data: ConversationCreate | None = None,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> ConversationEnvelope:
    conversation = await service.open_conversation(identity, data.user_id if data else None)
    return ConversationEnvelope(conversation=ConversationResponse.model_validate(conversation))


@router.get("/messages/{conversation_id}", response_model=MessageListResponse)
async def get_messages(
    conversation_id: UUID,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> MessageListResponse:
    messages = await service.fetch_backlog(identity, conversation_id)
    return MessageListResponse(messages=[MessageResponse.model_validate(m) for m in messages])


@router.post("/messages", response_model=MessageEnvelope, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: MessageCreate,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> MessageEnvelope:
    message = await service.send_message(
        identity, data.conversation_id, data.message, data.receiver_id
    )
    return MessageEnvelope(message=MessageResponse.model_validate(message))


@router.put("/messages/{message_id}/read", response_model=MessageEnvelope)
async def mark_message_read(
    message_id: UUID,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> MessageEnvelope:
    message = await service.mark_read(identity, message_id)
    return MessageEnvelope(message=MessageResponse.model_validate(message))


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: UUID,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> Response:
    await service.delete_message(identity, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
