"""Tests for the message stores (local key-value mirror and SQLite)."""

from datetime import datetime, timedelta, timezone

import pytest

from alpo.chat.message_store import LocalMessageStore, SqliteMessageStore
from alpo.chat.models import ChatMessage, ChatSession
from alpo.chat.session_store import LocalSessionStore, SqliteSessionStore
from alpo.exceptions import StoreUnavailableError
from alpo.storage.database import Database
from alpo.storage.kv_store import InMemoryKeyValueStore

T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "alpo.db")
    yield database
    database.close()


@pytest.fixture(params=["local", "sqlite"])
def stores(request, db):
    """(session_store, message_store) pair for one backend."""
    if request.param == "local":
        kv = InMemoryKeyValueStore()
        return LocalSessionStore(kv), LocalMessageStore(kv)
    return SqliteSessionStore(db), SqliteMessageStore(db)


def make_message(session: ChatSession, text: str, is_user: bool, ts: datetime, msg_id=None):
    kwargs = {"id": msg_id} if msg_id else {}
    return ChatMessage(
        text=text,
        is_user=is_user,
        timestamp=ts,
        user_id=session.user_id,
        session_id=session.id,
        **kwargs,
    )


def test_empty_history(stores):
    """Test a new session has no messages."""
    sessions, messages = stores
    session = sessions.rotate(ChatSession(user_id="u1"))

    assert messages.list_for_session("u1", session.id) == []


def test_add_and_list_in_timestamp_order(stores):
    """Test messages come back in timestamp order."""
    sessions, messages = stores
    session = sessions.rotate(ChatSession(user_id="u1"))

    messages.add_many([make_message(session, "second", False, T0 + timedelta(seconds=5))])
    messages.add_many([make_message(session, "first", True, T0)])

    history = messages.list_for_session("u1", session.id)

    assert [m.text for m in history] == ["first", "second"]
    assert history[0].is_user is True
    assert history[1].is_user is False
    assert history[0].timestamp == T0


def test_equal_timestamps_keep_insertion_order(stores):
    """Test equal timestamps keep insertion order."""
    sessions, messages = stores
    session = sessions.rotate(ChatSession(user_id="u1"))

    batch = [make_message(session, f"m{i}", i % 2 == 0, T0) for i in range(5)]
    messages.add_many(batch)

    history = messages.list_for_session("u1", session.id)

    assert [m.text for m in history] == ["m0", "m1", "m2", "m3", "m4"]


def test_history_is_scoped_to_session(stores):
    """Test history is per session."""
    sessions, messages = stores
    old = sessions.rotate(ChatSession(user_id="u1"))
    messages.add_many([make_message(old, "old", True, T0)])
    new = sessions.rotate(ChatSession(user_id="u1"))
    messages.add_many([make_message(new, "new", True, T0 + timedelta(minutes=1))])

    assert [m.text for m in messages.list_for_session("u1", new.id)] == ["new"]
    assert [m.text for m in messages.list_for_session("u1", old.id)] == ["old"]


def test_delete_for_user(stores):
    """Test deletion is scoped to one user."""
    sessions, messages = stores
    mine = sessions.rotate(ChatSession(user_id="u1"))
    theirs = sessions.rotate(ChatSession(user_id="u2"))
    messages.add_many([make_message(mine, "a", True, T0), make_message(mine, "b", False, T0)])
    messages.add_many([make_message(theirs, "c", True, T0)])

    deleted = messages.delete_for_user("u1")

    assert deleted == 2
    assert messages.list_for_session("u1", mine.id) == []
    assert len(messages.list_for_session("u2", theirs.id)) == 1


def test_message_without_session_is_rejected(stores):
    """Test a message needs a session."""
    _, messages = stores
    orphan = ChatMessage(text="lost", is_user=True, user_id="u1")

    with pytest.raises(ValueError, match="no user_id/session_id"):
        messages.add_many([orphan])


def test_sqlite_batch_is_all_or_nothing(db):
    """Test a failing batch stores nothing."""
    sessions = SqliteSessionStore(db)
    messages = SqliteMessageStore(db)
    session = sessions.rotate(ChatSession(user_id="u1"))
    messages.add_many([make_message(session, "kept", True, T0, msg_id="dup")])

    with pytest.raises(StoreUnavailableError):
        messages.add_many(
            [
                make_message(session, "new", True, T0 + timedelta(seconds=1)),
                make_message(session, "clash", False, T0 + timedelta(seconds=2), msg_id="dup"),
            ]
        )

    assert [m.text for m in messages.list_for_session("u1", session.id)] == ["kept"]


def test_sqlite_requires_existing_session(db):
    """Test messages must reference a stored session."""
    messages = SqliteMessageStore(db)
    ghost = ChatSession(user_id="u1")

    with pytest.raises(StoreUnavailableError):
        messages.add_many([make_message(ghost, "hello", True, T0)])


def test_local_delete_for_user_removes_corrupt_mirror():
    """Test a local mirror that no longer parses can still be deleted."""
    kv = InMemoryKeyValueStore()
    kv.set("chat_messages:u1", [{"garbage": True}])
    messages = LocalMessageStore(kv)
    with pytest.raises(StoreUnavailableError):
        messages.list_for_session("u1", "s1")

    deleted = messages.delete_for_user("u1")

    assert deleted == 1
    assert kv.get("chat_messages:u1") is None
    assert messages.list_for_session("u1", "s1") == []
