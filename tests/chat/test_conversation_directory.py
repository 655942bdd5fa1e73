import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.chat.models.conversation import canonical_pair
from app.chat.repositories.memory import InMemoryChatData, memory_repositories
from app.chat.services.conversation_directory import ConversationDirectory
from app.core.config import settings
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from tests.utils.factories import (
    create_chat_user_factory,
    create_identity,
    create_message_factory,
)


@pytest.fixture
def directory(repos):
    return ConversationDirectory(repos, settings)


@pytest.fixture
def memory_data():
    return InMemoryChatData()


class TestCanonicalPair:
    def test_should_order_participants(self):
        assert canonical_pair("b", "a") == ("a", "b")
        assert canonical_pair("a", "b") == ("a", "b")


class TestGetOrCreate:
    def test_should_return_same_conversation_for_both_orders(self, directory):
        first = directory.get_or_create("alice", "bob")
        second = directory.get_or_create("bob", "alice")

        assert first.id == second.id
        assert (first.participant_a_id, first.participant_b_id) == ("alice", "bob")
        assert directory.repos.conversations.count() == 1

    def test_should_store_mixed_case_ids(self, directory):
        first = directory.get_or_create("a", "B")
        second = directory.get_or_create("B", "a")

        assert first.id == second.id
        assert (first.participant_a_id, first.participant_b_id) == ("B", "a")
        assert directory.repos.conversations.count() == 1

    def test_should_reject_conversation_with_self(self, directory):
        with pytest.raises(ValidationError, match="yourself"):
            directory.get_or_create("alice", "alice")

    def test_should_reject_empty_participant(self, directory):
        with pytest.raises(ValidationError):
            directory.get_or_create("alice", "")

    def test_should_reuse_row_when_insert_loses_race(self, directory, monkeypatch):
        winner = directory.get_or_create("alice", "bob")
        repo = directory.repos.conversations
        original_find = repo.find_by_pair
        calls = {"n": 0}

        def stale_find(user_a, user_b):
            # First lookup misses, as if the other writer had not committed yet
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return original_find(user_a, user_b)

        monkeypatch.setattr(repo, "find_by_pair", stale_find)

        result = repo.get_or_create("bob", "alice")

        assert result.id == winner.id
        assert repo.count() == 1

    def test_should_create_one_conversation_under_concurrency(self, memory_data):
        def open_pair(i: int):
            repos = memory_repositories(memory_data)
            a, b = ("alice", "bob") if i % 2 else ("bob", "alice")
            return ConversationDirectory(repos, settings).get_or_create(a, b).id

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = set(pool.map(open_pair, range(64)))

        assert len(ids) == 1
        assert len(memory_data.conversations) == 1


class TestCanAccess:
    def test_should_allow_participants_only(self, directory):
        conversation = directory.get_or_create("alice", "bob")

        assert directory.can_access(create_identity(user_id="alice"), conversation.id)
        assert directory.can_access(create_identity(user_id="bob"), conversation.id)
        assert not directory.can_access(create_identity(user_id="mallory"), conversation.id)

    def test_should_deny_unknown_conversation(self, directory):
        assert not directory.can_access(create_identity(user_id="alice"), uuid.uuid4())

    def test_should_not_grant_admin_access_to_others_conversations(self, directory):
        conversation = directory.get_or_create("alice", "bob")
        admin = create_identity(email=settings.ADMIN_EMAIL, is_admin=True)

        assert not directory.can_access(admin, conversation.id)
        with pytest.raises(ForbiddenError, match="Access denied"):
            directory.get_for(admin, conversation.id)

    def test_get_for_should_raise_not_found(self, directory):
        with pytest.raises(NotFoundError):
            directory.get_for(create_identity(user_id="alice"), uuid.uuid4())


class TestStartFor:
    def test_should_route_regular_user_to_support(self, directory, db_session):
        support = create_chat_user_factory(db_session, email=settings.ADMIN_EMAIL)
        user = create_identity()

        conversation = directory.start_for(user, None)

        assert set(conversation.participant_ids) == {user.id, support.id}

    def test_should_fail_when_support_never_signed_in(self, directory):
        with pytest.raises(NotFoundError, match="Support account"):
            directory.start_for(create_identity(), None)

    def test_admin_must_name_a_known_user(self, directory, db_session):
        admin = create_identity(email=settings.ADMIN_EMAIL, is_admin=True)
        customer = create_chat_user_factory(db_session)

        with pytest.raises(ValidationError, match="user_id is required"):
            directory.start_for(admin, None)
        with pytest.raises(NotFoundError):
            directory.start_for(admin, "nobody")

        conversation = directory.start_for(admin, customer.id)
        assert conversation.has_participant(customer.id)


class TestListing:
    def test_should_list_only_own_conversations(self, directory):
        mine = directory.get_or_create("alice", "bob")
        directory.get_or_create("carol", "dave")

        listed = directory.list_for(create_identity(user_id="alice"))

        assert [c.id for c in listed] == [mine.id]

    def test_admin_should_see_every_conversation(self, directory):
        directory.get_or_create("alice", "bob")
        directory.get_or_create("carol", "dave")
        admin = create_identity(email=settings.ADMIN_EMAIL, is_admin=True)

        assert len(directory.list_for(admin)) == 2

    def test_summary_should_carry_unread_count_and_last_message(self, directory, db_session):
        create_chat_user_factory(db_session, user_id="bob", email="bob@edufund.test")
        conversation = directory.get_or_create("alice", "bob")
        create_message_factory(db_session, conversation.id, "bob", "alice", content="first")
        create_message_factory(db_session, conversation.id, "bob", "alice", content="second")

        [summary] = directory.summaries_for(create_identity(user_id="alice"))

        assert summary.other_user_id == "bob"
        assert summary.other_user_email == "bob@edufund.test"
        assert summary.unread_count == 2
        assert summary.last_message == "second"
        assert summary.last_message_is_from_me is False
