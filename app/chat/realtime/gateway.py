"""Per-socket session state machine for the chat WebSocket.

A session starts ``connected``, becomes ``authenticated`` after a
successful ``auth`` frame and ends ``disconnected``. Rooms can only be
joined once authenticated, and every join goes through the same access
check the REST surface uses.
"""

from enum import Enum

import pydantic
import structlog
from sqlalchemy.exc import OperationalError

from app.chat.models import Message
from app.chat.realtime.connections import ChatConnection
from app.chat.realtime.fanout import message_payload
from app.chat.runtime import ChatRuntime
from app.chat.schemas import events
from app.core.exceptions import AppError, ServiceUnavailableError, UnauthorizedError

logger = structlog.get_logger(__name__)

# Close code sent after a failed auth frame
AUTH_FAILED_CLOSE_CODE = 4401


class SessionState(str, Enum):
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"


class SessionGateway:
    def __init__(self, runtime: ChatRuntime, connection: ChatConnection) -> None:
        self.runtime = runtime
        self.service = runtime.service
        self.registry = runtime.registry
        self.connection = connection
        self.state = SessionState.CONNECTED

    async def handle_text(self, raw: str) -> bool:
        """Process one inbound frame; returns False when the socket must close."""
        if self.state is SessionState.DISCONNECTED:
            return False

        try:
            event = events.parse_inbound(raw)
        except pydantic.ValidationError as e:
            details = e.errors(include_url=False, include_context=False, include_input=False)
            self._error("Malformed event", "VALIDATION_ERROR", details=details)
            return True

        if isinstance(event, events.AuthEvent):
            return await self._authenticate(event)

        if self.state is not SessionState.AUTHENTICATED:
            self._error("Not authenticated", "UNAUTHORIZED")
            return True

        try:
            await self._dispatch(event)
        except AppError as e:
            self._error(e.message, e.error_code)
        except OperationalError as e:
            logger.error("chat_store_unavailable", error=str(e.orig))
            unavailable = ServiceUnavailableError()
            self._error(unavailable.message, unavailable.error_code)
        return True

    async def _authenticate(self, event: events.AuthEvent) -> bool:
        if self.state is SessionState.AUTHENTICATED:
            self._error("Already authenticated", "VALIDATION_ERROR")
            return True

        try:
            identity = await self.runtime.resolver.resolve(event.token)
        except UnauthorizedError as e:
            logger.info("ws_auth_failed", connection_id=self.connection.id, code=e.error_code)
            self.connection.enqueue(
                events.outbound(events.AUTH_ERROR, {"error": e.message, "code": e.error_code})
            )
            return False

        self.connection.identity = identity
        self.registry.register_user(self.connection)
        self.state = SessionState.AUTHENTICATED
        structlog.contextvars.bind_contextvars(user_id=identity.id)
        logger.info("ws_authenticated", connection_id=self.connection.id, user_id=identity.id)

        try:
            await self.service.record_identity(identity)
        except Exception:
            logger.exception("chat_user_record_failed", user_id=identity.id)

        self.connection.enqueue(
            events.outbound(
                events.AUTH_SUCCESS,
                {"user_id": identity.id, "email": identity.email, "is_admin": identity.is_admin},
            )
        )
        return True

    async def _dispatch(self, event) -> None:
        identity = self.connection.identity
        if identity is None:
            raise UnauthorizedError("Not authenticated")

        if isinstance(event, events.JoinEvent):
            if not await self.service.can_join(identity, event.conversation_id):
                logger.info(
                    "ws_join_denied", user_id=identity.id, conversation_id=str(event.conversation_id)
                )
                self._error("Access denied", "FORBIDDEN")
                return
            self.registry.join(self.connection, event.conversation_id)
            self.connection.enqueue(
                events.outbound(events.JOINED, {"conversation_id": str(event.conversation_id)})
            )

        elif isinstance(event, events.LeaveEvent):
            self.registry.leave(self.connection, event.conversation_id)
            self.connection.enqueue(
                events.outbound(events.LEFT, {"conversation_id": str(event.conversation_id)})
            )

        elif isinstance(event, events.SendEvent):
            message = await self.service.send_message(
                identity, event.conversation_id, event.message, event.receiver_id
            )
            self._ack(message)

        elif isinstance(event, events.ReadEvent):
            await self.service.mark_read(identity, event.message_id)

        elif isinstance(event, events.TypingEvent):
            if event.type == events.TYPING:
                await self.runtime.presence.typing(self.connection, event.conversation_id)
            else:
                await self.runtime.presence.stop_typing(self.connection, event.conversation_id)

    def _ack(self, message: Message) -> None:
        self.connection.enqueue(events.outbound(events.MESSAGE_SENT, message_payload(message)))

    def _error(self, message: str, code: str, details: object | None = None) -> None:
        data: dict[str, object] = {"error": message, "code": code}
        if details:
            data["details"] = details
        self.connection.enqueue(events.outbound(events.ERROR, data))

    async def disconnect(self) -> None:
        if self.state is SessionState.DISCONNECTED:
            return
        self.state = SessionState.DISCONNECTED
        self.registry.discard(self.connection)
        await self.connection.close()
        logger.info("ws_disconnected", connection_id=self.connection.id, user_id=self.connection.user_id)
