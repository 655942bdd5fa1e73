"""Transport between the code that publishes chat events and the sockets.

``LocalBus`` hands frames straight to this process's connections.
``RedisBus`` publishes through Redis pub/sub so that every API process
delivers to the sockets it holds; one Redis connection publishes in
call order, which keeps per-conversation order across processes.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core import redis as redis_module

logger = structlog.get_logger(__name__)

Envelope = dict[str, Any]
Handler = Callable[[str, Envelope], Awaitable[None]]

CHANNEL_PREFIX = "chat:"


class MessageBus:
    enabled = False

    def __init__(self) -> None:
        self._handler: Handler | None = None

    def bind(self, handler: Handler) -> None:
        self._handler = handler

    async def publish(self, channel: str, envelope: Envelope) -> None:
        raise NotImplementedError

    async def start(self) -> None:
        return

    async def stop(self) -> None:
        return


class LocalBus(MessageBus):
    async def publish(self, channel: str, envelope: Envelope) -> None:
        if self._handler is not None:
            await self._handler(channel, envelope)


class RedisBus(MessageBus):
    enabled = True

    def __init__(self, client: Redis | None = None) -> None:
        super().__init__()
        self._client = client
        self._listener: asyncio.Task[None] | None = None

    @property
    def client(self) -> Redis:
        client = self._client or redis_module.redis_client
        if client is None:
            raise RuntimeError("Redis client is not initialized")
        return client

    async def publish(self, channel: str, envelope: Envelope) -> None:
        await self.client.publish(f"{CHANNEL_PREFIX}{channel}", json.dumps(envelope, default=str))

    async def start(self) -> None:
        if self._listener is not None:
            return
        pubsub = self.client.pubsub()
        await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        self._listener = asyncio.create_task(self._listen(pubsub), name="chat-redis-listener")
        logger.info("chat_bus_subscribed", pattern=f"{CHANNEL_PREFIX}*")

    async def stop(self) -> None:
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None

    async def _listen(self, pubsub: Any) -> None:
        try:
            while True:
                try:
                    raw = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                except RedisError as e:
                    logger.warning("chat_bus_read_failed", error=str(e))
                    await asyncio.sleep(0.5)
                    continue
                if not raw or raw.get("type") != "pmessage":
                    continue
                try:
                    await self._dispatch(raw)
                except Exception:
                    logger.exception("chat_bus_dispatch_failed", channel=raw.get("channel"))
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()

    async def _dispatch(self, raw: dict[str, Any]) -> None:
        channel = raw["channel"]
        data = raw["data"]
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            envelope = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("chat_bus_bad_payload", channel=channel)
            return
        if self._handler is not None:
            await self._handler(channel.removeprefix(CHANNEL_PREFIX), envelope)
