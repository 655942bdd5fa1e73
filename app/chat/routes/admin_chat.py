from fastapi import APIRouter, Depends

from app.chat.dependencies import get_chat_service, require_admin
from app.chat.schemas.admin import ChatStatsResponse, ChatUserListResponse, ChatUserResponse
from app.chat.schemas.identity import Identity
from app.chat.services.chat_service import ChatService

router = APIRouter()


@router.get("/users", response_model=ChatUserListResponse)
async def list_chat_users(
    _admin: Identity = Depends(require_admin),
    service: ChatService = Depends(get_chat_service),
) -> ChatUserListResponse:
    """Everyone who has used the chat, newest first, without the support account."""
    users = await service.list_users()
    return ChatUserListResponse(
        users=[ChatUserResponse.model_validate(u) for u in users],
        count=len(users),
    )


@router.get("/stats", response_model=ChatStatsResponse)
async def get_chat_stats(
    _admin: Identity = Depends(require_admin),
    service: ChatService = Depends(get_chat_service),
) -> ChatStatsResponse:
    return ChatStatsResponse(stats=await service.stats())
