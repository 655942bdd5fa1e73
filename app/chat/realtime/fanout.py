import logging
from collections.abc import Callable
from typing import Any
from uuid import UUID

from app.chat.models import Message
from app.chat.realtime.bus import Envelope, MessageBus
from app.chat.realtime.connections import ConnectionRegistry, Frame
from app.chat.schemas import events
from app.chat.schemas.message import MessageResponse

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 50

ReceiverReached = Callable[[UUID, str, UUID], None]


def room_channel(conversation_id: UUID) -> str:
    return f"conversation:{conversation_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def message_payload(message: Message) -> dict[str, Any]:
    return MessageResponse.model_validate(message).model_dump(mode="json")


class DeliveryFanout:
    """Pushes store events to the sockets that should see them.

    Best effort: a client that is not connected sees the change on its next
    backlog fetch. The store stays the source of truth.
    """

    def __init__(self, registry: ConnectionRegistry, bus: MessageBus) -> None:
        self.registry = registry
        self.bus = bus
        # Set by the chat service; called when a new message reaches its receiver
        self.on_receiver_reached: ReceiverReached | None = None
        bus.bind(self._deliver)

    async def message_created(self, message: Message, sender_email: str) -> None:
        await self.publish_room(
            message.conversation_id, events.outbound(events.MESSAGE_NEW, message_payload(message))
        )
        await self.bus.publish(
            user_channel(message.receiver_id),
            {
                "frame": events.outbound(
                    events.MESSAGE_NOTIFICATION,
                    {
                        "conversation_id": str(message.conversation_id),
                        "message_id": str(message.id),
                        "sender_id": message.sender_id,
                        "sender_email": sender_email,
                        "preview": message.content[:PREVIEW_LENGTH],
                    },
                )
            },
        )

    async def message_updated(self, event: str, message: Message) -> None:
        await self.publish_room(message.conversation_id, events.outbound(event, message_payload(message)))

    async def message_deleted(self, message: Message) -> None:
        await self.publish_room(
            message.conversation_id,
            events.outbound(
                events.MESSAGE_DELETED,
                {"id": str(message.id), "conversation_id": str(message.conversation_id)},
            ),
        )

    async def publish_room(
        self,
        conversation_id: UUID,
        frame: Frame,
        exclude_connection: str | None = None,
        exclude_user: str | None = None,
    ) -> None:
        envelope: Envelope = {"frame": frame}
        if exclude_connection is not None:
            envelope["exclude"] = exclude_connection
        if exclude_user is not None:
            envelope["exclude_user"] = exclude_user
        await self.bus.publish(room_channel(conversation_id), envelope)

    async def _deliver(self, channel: str, envelope: Envelope) -> None:
        kind, _, key = channel.partition(":")
        frame: Frame = envelope["frame"]
        exclude = envelope.get("exclude")
        exclude_user = envelope.get("exclude_user")

        if kind == "conversation":
            targets = self.registry.room_members(UUID(key))
        elif kind == "user":
            targets = self.registry.user_connections(key)
        else:
            logger.warning("Dropping frame for unknown channel %s", channel)
            return

        for connection in targets:
            if connection.id == exclude:
                continue
            if exclude_user is not None and connection.user_id == exclude_user:
                continue
            connection.enqueue(frame)

        if kind == "conversation" and frame.get("event") == events.MESSAGE_NEW:
            data = frame["data"]
            receiver_id = data["receiver_id"]
            reached = any(c.user_id == receiver_id for c in targets)
            if reached and self.on_receiver_reached is not None:
                self.on_receiver_reached(UUID(data["id"]), receiver_id, UUID(key))
