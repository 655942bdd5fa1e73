import logging
from typing import Annotated

from fastapi import Depends, Header, Request

from app.chat.runtime import ChatRuntime, get_runtime
from app.chat.schemas.identity import Identity
from app.chat.services.chat_service import ChatService
from app.core.exceptions import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)


async def get_bearer_token(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Extract the bearer token from the Authorization header"""
    if not authorization:
        raise UnauthorizedError("No token provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("No token provided")
    return token.strip()


def get_chat_runtime() -> ChatRuntime:
    return get_runtime()


def get_chat_service(runtime: ChatRuntime = Depends(get_chat_runtime)) -> ChatService:
    return runtime.service


async def get_current_identity(
    request: Request,
    token: str = Depends(get_bearer_token),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> Identity:
    """Resolve the caller and note them in the chat user directory"""
    identity = await runtime.resolver.resolve(token)
    request.state.user_id = identity.id

    try:
        await runtime.service.record_identity(identity)
    except Exception:
        logger.exception("Failed to record chat user %s", identity.id)

    return identity


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity
