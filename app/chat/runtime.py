"""Process-wide chat wiring.

The runtime picks the repository implementation, the fan-out transport
and the identity resolver once, from settings, and everything else gets
them from here. Tests swap in their own runtime with :func:`set_runtime`.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy.orm import Session

from app.chat.realtime.bus import LocalBus, MessageBus, RedisBus
from app.chat.realtime.connections import ConnectionRegistry
from app.chat.realtime.fanout import DeliveryFanout
from app.chat.realtime.presence import PresenceSignaling
from app.chat.repositories.base import ChatRepositories
from app.chat.repositories.memory import InMemoryChatData, memory_repositories
from app.chat.repositories.sql import sql_repositories
from app.chat.services.chat_service import ChatService
from app.chat.services.identity_resolver import IdentityResolver
from app.core.config import Settings, settings

logger = structlog.get_logger(__name__)


def build_bus(config: Settings) -> MessageBus:
    if config.CHAT_FANOUT_BACKEND == "redis":
        return RedisBus()
    return LocalBus()


class ChatRuntime:
    def __init__(
        self,
        config: Settings = settings,
        session_factory: Callable[[], Session] | None = None,
        resolver: IdentityResolver | None = None,
        bus: MessageBus | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver or IdentityResolver(config)
        self.registry = ConnectionRegistry()
        self.bus = bus or build_bus(config)
        self.fanout = DeliveryFanout(self.registry, self.bus)
        self.presence = PresenceSignaling(self.registry, self.fanout)

        self._memory: InMemoryChatData | None = None
        self._session_factory: Callable[[], Session] | None = None
        if config.CHAT_STORE == "memory":
            self._memory = InMemoryChatData()
        elif session_factory is not None:
            self._session_factory = session_factory
        else:
            from app.db.session import SessionLocal

            self._session_factory = SessionLocal

        self.service = ChatService(self)

    @contextmanager
    def repositories(self) -> Iterator[ChatRepositories]:
        if self._memory is not None:
            yield memory_repositories(self._memory)
            return
        if self._session_factory is None:
            raise RuntimeError("No database session factory configured")
        db = self._session_factory()
        try:
            yield sql_repositories(db)
        finally:
            db.close()

    async def start(self) -> None:
        await self.bus.start()
        logger.info(
            "chat_runtime_started",
            store=self.config.CHAT_STORE,
            fanout=self.config.CHAT_FANOUT_BACKEND,
            auth_mode=self.config.AUTH_MODE,
        )

    async def stop(self) -> None:
        await self.service.wait_idle()
        await self.bus.stop()
        logger.info("chat_runtime_stopped")


_runtime: ChatRuntime | None = None


def get_runtime() -> ChatRuntime:
    global _runtime
    if _runtime is None:
        _runtime = ChatRuntime()
    return _runtime


def set_runtime(runtime: ChatRuntime | None) -> None:
    global _runtime
    _runtime = runtime


def reset_runtime() -> None:
    set_runtime(None)
