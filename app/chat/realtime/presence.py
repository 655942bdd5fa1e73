from uuid import UUID

from app.chat.realtime.connections import ChatConnection, ConnectionRegistry
from app.chat.realtime.fanout import DeliveryFanout
from app.chat.schemas import events
from app.chat.schemas.identity import Identity
from app.core.exceptions import ForbiddenError


class PresenceSignaling:
    """Typing indicators and online counts. Nothing here is persisted.

    Receivers expire a ``typing`` on their own (about 3 seconds without a
    ``stop_typing`` or a new message); the server keeps no timers.
    """

    def __init__(self, registry: ConnectionRegistry, fanout: DeliveryFanout) -> None:
        self.registry = registry
        self.fanout = fanout

    async def typing(self, connection: ChatConnection, conversation_id: UUID) -> None:
        identity = self._require_member(connection, conversation_id)
        await self.fanout.publish_room(
            conversation_id,
            events.outbound(
                events.TYPING,
                {
                    "conversation_id": str(conversation_id),
                    "user_id": identity.id,
                    "email": identity.email,
                },
            ),
            exclude_user=identity.id,
        )

    async def stop_typing(self, connection: ChatConnection, conversation_id: UUID) -> None:
        identity = self._require_member(connection, conversation_id)
        await self.fanout.publish_room(
            conversation_id,
            events.outbound(
                events.STOP_TYPING,
                {"conversation_id": str(conversation_id), "user_id": identity.id},
            ),
            exclude_user=identity.id,
        )

    def active_users(self) -> int:
        return self.registry.active_user_count()

    def _require_member(self, connection: ChatConnection, conversation_id: UUID) -> Identity:
        if connection.identity is None or not self.registry.is_member(connection, conversation_id):
            raise ForbiddenError("Join the conversation first")
        return connection.identity
