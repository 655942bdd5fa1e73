from pydantic import BaseModel, ConfigDict

from app.core.datetime_utils import UTCDatetime


class ChatUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    created_at: UTCDatetime
    last_seen_at: UTCDatetime


class ChatUserListResponse(BaseModel):
    ok: bool = True
    users: list[ChatUserResponse]
    count: int


class ChatStats(BaseModel):
    total_conversations: int = 0
    total_messages: int = 0
    unread_messages: int = 0
    active_users: int = 0


class ChatStatsResponse(BaseModel):
    ok: bool = True
    stats: ChatStats
