from datetime import UTC, datetime, timedelta
from typing import Any

from jose import jwt

from app.chat.schemas.identity import Identity
from app.core.config import settings


def create_token(identity: Identity, expires_in: timedelta = timedelta(minutes=15), **claims: Any) -> str:
    """Sign a provider-style access token for the given identity."""
    payload: dict[str, Any] = {
        "sub": identity.id,
        "email": identity.email,
        "exp": datetime.now(UTC) + expires_in,
        **claims,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_auth_headers(token: str) -> dict[str, str]:
    """Create Authorization headers with Bearer token."""
    return {"Authorization": f"Bearer {token}"}


def assert_error_response(data: dict[str, Any], code: str) -> None:
    assert data["success"] is False
    assert data["error"]["code"] == code
    assert data["error"]["message"]


def assert_message_response_valid(data: dict[str, Any]) -> None:
    for key in ("id", "conversation_id", "sender_id", "receiver_id", "content", "status"):
        assert key in data
