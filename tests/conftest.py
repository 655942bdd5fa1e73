from pathlib import Path

from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / ".env.test"
load_dotenv(env_file)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.chat.repositories.sql import sql_repositories  # noqa: E402
from app.chat.runtime import ChatRuntime, reset_runtime, set_runtime  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import build_engine  # noqa: E402
from app.main import app  # noqa: E402
from tests.utils.factories import create_chat_user_factory, create_identity  # noqa: E402
from tests.utils.helpers import create_token  # noqa: E402


@pytest.fixture
def test_engine():
    """In-memory SQLite shared by every session of one test."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def test_session_local(test_engine):
    return sessionmaker(
        bind=test_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
def db_session(test_session_local):
    session = test_session_local()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def repos(db_session):
    return sql_repositories(db_session)


@pytest.fixture
def chat_runtime(test_session_local):
    """Database-backed runtime installed as the app's runtime for one test."""
    runtime = ChatRuntime(settings, session_factory=test_session_local)
    set_runtime(runtime)

    yield runtime

    reset_runtime()


@pytest.fixture
def memory_runtime():
    runtime = ChatRuntime(settings.model_copy(update={"CHAT_STORE": "memory"}))
    set_runtime(runtime)

    yield runtime

    reset_runtime()


@pytest.fixture
async def test_client(chat_runtime):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await chat_runtime.service.wait_idle()


@pytest.fixture
def test_admin():
    return create_identity(email=settings.ADMIN_EMAIL, is_admin=True)


@pytest.fixture
def test_user():
    return create_identity()


@pytest.fixture
def other_user():
    return create_identity()


@pytest.fixture
def support_account(test_session_local, test_admin):
    """The support account has signed in once, so users can reach it."""
    with test_session_local() as session:
        return create_chat_user_factory(session, user_id=test_admin.id, email=test_admin.email)


@pytest.fixture
def test_admin_token(test_admin):
    return create_token(test_admin)


@pytest.fixture
def test_user_token(test_user):
    return create_token(test_user)


@pytest.fixture
def other_user_token(other_user):
    return create_token(other_user)
