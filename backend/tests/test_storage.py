"""Unit tests for the DuckDB message store."""

import os
import tempfile

import pytest

from app.storage.schemas import ChatMessage, HistoryScope, MessageFilter, MessageKind
from app.storage.service import MessageStore, PersistenceError


GLOBAL = MessageFilter(scope=HistoryScope.GLOBAL)


def direct(me, mate):
    return MessageFilter(scope=HistoryScope.DIRECT, me=me, mate=mate)


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    # DuckDB will create a valid database file
    db_path = tempfile.mktemp(suffix=".duckdb")

    yield db_path

    if os.path.exists(db_path):
        os.remove(db_path)
    wal_path = db_path + ".wal"
    if os.path.exists(wal_path):
        os.remove(wal_path)


class TestInsertMessage:
    """Tests for MessageStore.insert_message."""

    def test_ids_increase_with_each_insert(self, store):
        first = store.insert_message("one", "alice", None, "10:00")
        second = store.insert_message("two", "alice", "bob", "10:01")
        third = store.insert_message("three", "bob", None, "10:02")

        assert first < second < third

    def test_missing_text_is_stored_as_empty_string(self, store):
        store.insert_message(None, "alice", None, "10:00")

        [message] = store.query_messages(GLOBAL)
        assert message.text == ""

    def test_file_message_keeps_kind_and_url(self, store):
        store.insert_message(
            "", "alice", "bob", "10:00",
            kind=MessageKind.FILE, file_url="http://host/uploads/1.png",
        )

        [message] = store.query_messages(direct("alice", "bob"))
        assert message.type == MessageKind.FILE
        assert message.file_url == "http://host/uploads/1.png"

    def test_constraint_violation_raises_persistence_error(self, store):
        with pytest.raises(PersistenceError) as exc_info:
            store.insert_message("hi", None, None, "10:00")

        assert exc_info.value.operation == "insert_message"
        assert store.count_messages() == 0


class TestQueryMessages:
    """Tests for MessageStore.query_messages."""

    def test_empty_store_returns_empty_list(self, store):
        assert store.query_messages(GLOBAL) == []
        assert store.query_messages(direct("alice", "bob")) == []

    def test_global_history_excludes_direct_messages(self, store):
        store.insert_message("hello all", "alice", None, "10:00")
        store.insert_message("psst", "alice", "bob", "10:01")
        store.insert_message("hi all", "carol", None, "10:02")

        texts = [m.text for m in store.query_messages(GLOBAL)]
        assert texts == ["hello all", "hi all"]

    def test_direct_history_excludes_global_and_other_pairs(self, store):
        store.insert_message("hello all", "alice", None, "10:00")
        store.insert_message("to bob", "alice", "bob", "10:01")
        store.insert_message("to carol", "alice", "carol", "10:02")
        store.insert_message("carol to bob", "carol", "bob", "10:03")

        texts = [m.text for m in store.query_messages(direct("alice", "bob"))]
        assert texts == ["to bob"]

    def test_direct_history_interleaves_both_directions(self, store):
        sent = []
        for i in range(6):
            sender, receiver = ("alice", "bob") if i % 2 == 0 else ("bob", "alice")
            store.insert_message(f"msg {i}", sender, receiver, "10:00")
            sent.append(f"msg {i}")

        forward = store.query_messages(direct("alice", "bob"))
        backward = store.query_messages(direct("bob", "alice"))

        assert [m.text for m in forward] == sent
        assert forward == backward

    def test_rows_come_back_as_chat_messages(self, store):
        message_id = store.insert_message("hi", "alice", "bob", "09:30")

        [message] = store.query_messages(direct("alice", "bob"))
        assert isinstance(message, ChatMessage)
        assert message.id == message_id
        assert message.sender_username == "alice"
        assert message.receiver_username == "bob"
        assert message.timestamp == "09:30"
        assert message.type == MessageKind.TEXT
        assert message.file_url is None

    def test_direct_filter_requires_both_usernames(self):
        with pytest.raises(ValueError):
            MessageFilter(scope=HistoryScope.DIRECT, me="alice")


class TestRenameUsername:
    """Tests for the username rename cascade."""

    def test_rename_rewrites_sender_and_receiver(self, store):
        store.insert_message("a->b", "alice", "bob", "10:00")
        store.insert_message("b->a", "bob", "alice", "10:01")
        store.insert_message("global", "alice", None, "10:02")
        store.insert_message("c->b", "carol", "bob", "10:03")

        touched = store.rename_username("alice", "alicia")

        assert touched == 3
        assert [m.text for m in store.query_messages(direct("alicia", "bob"))] == [
            "a->b", "b->a"
        ]
        assert store.query_messages(direct("alice", "bob")) == []
        assert store.query_messages(GLOBAL)[0].sender_username == "alicia"

    def test_rename_to_same_name_is_noop(self, store):
        store.insert_message("hi", "alice", None, "10:00")

        assert store.rename_username("alice", "alice") == 0

    def test_rename_unknown_user_touches_nothing(self, store):
        store.insert_message("hi", "alice", None, "10:00")

        assert store.rename_username("nobody", "someone") == 0
        assert store.query_messages(GLOBAL)[0].sender_username == "alice"


class TestFileBackedStore:
    """The store survives a reopen when backed by a file."""

    def test_messages_persist_across_reopen(self, temp_db):
        first = MessageStore(db_path=temp_db)
        first.insert_message("kept", "alice", None, "10:00")
        first.close()

        second = MessageStore(db_path=temp_db)
        try:
            assert [m.text for m in second.query_messages(GLOBAL)] == ["kept"]
            next_id = second.insert_message("next", "alice", None, "10:01")
            assert next_id > second.query_messages(GLOBAL)[0].id
        finally:
            second.close()


class TestClosedStore:
    """close() is final; later calls fail instead of reopening."""

    def test_insert_after_close_raises(self):
        store = MessageStore(db_path=":memory:")
        store.close()

        with pytest.raises(PersistenceError) as exc_info:
            store.insert_message("late", "alice", None, "10:00")
        assert exc_info.value.operation == "connect"

    def test_query_after_close_raises(self):
        store = MessageStore(db_path=":memory:")
        store.insert_message("before", "alice", None, "10:00")
        store.close()

        with pytest.raises(PersistenceError):
            store.query_messages(GLOBAL)
        with pytest.raises(PersistenceError):
            store.count_messages()

    def test_close_twice_is_harmless(self):
        store = MessageStore(db_path=":memory:")
        store.close()
        store.close()
