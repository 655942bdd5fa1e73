import pytest

from app.chat.realtime.bus import LocalBus, RedisBus
from app.chat.runtime import ChatRuntime, build_bus
from app.core.config import Settings, settings


class TestSettingsValidation:
    def test_should_reject_unknown_auth_mode(self):
        with pytest.raises(ValueError, match="Unknown AUTH_MODE"):
            Settings(DATABASE_URL="sqlite://", AUTH_MODE="trust-me")

    def test_jwt_mode_requires_secret(self):
        with pytest.raises(ValueError, match="requires SECRET_KEY"):
            Settings(DATABASE_URL="sqlite://", AUTH_MODE="jwt", SECRET_KEY="")

    def test_redis_fanout_requires_url(self):
        with pytest.raises(ValueError, match="requires REDIS_URL"):
            Settings(DATABASE_URL="sqlite://", CHAT_FANOUT_BACKEND="redis", REDIS_URL=None)


class TestRuntimeWiring:
    def test_should_pick_bus_from_settings(self):
        assert isinstance(build_bus(settings), LocalBus)
        redis_config = settings.model_copy(
            update={"CHAT_FANOUT_BACKEND": "redis", "REDIS_URL": "redis://localhost:6379/0"}
        )
        assert isinstance(build_bus(redis_config), RedisBus)

    def test_memory_store_needs_no_database(self):
        runtime = ChatRuntime(settings.model_copy(update={"CHAT_STORE": "memory"}))

        with runtime.repositories() as repos:
            conversation = repos.conversations.get_or_create("alice", "bob")
        with runtime.repositories() as repos:
            assert repos.conversations.get(conversation.id) is conversation

    def test_database_store_without_session_factory_fails_loudly(self):
        runtime = ChatRuntime(settings)
        runtime._session_factory = None

        with pytest.raises(RuntimeError, match="session factory"):
            with runtime.repositories():
                pass
