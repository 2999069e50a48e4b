"""Tests for the session stores.

Both backends are exercised through the same scenarios: rotation keeps a
single active session per user, token binding, deletion.
"""

import sqlite3

import pytest

from alpo.chat.models import ChatSession
from alpo.chat.session_store import SESSION_KEY_PREFIX, LocalSessionStore, SqliteSessionStore
from alpo.exceptions import StoreUnavailableError
from alpo.storage.database import Database
from alpo.storage.kv_store import InMemoryKeyValueStore


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "alpo.db")
    yield database
    database.close()


@pytest.fixture(params=["local", "sqlite"])
def store(request, db):
    if request.param == "local":
        return LocalSessionStore(InMemoryKeyValueStore())
    return SqliteSessionStore(db)


def test_get_active_without_sessions(store):
    """Test lookup for a user with no sessions."""
    assert store.get_active("u1") is None


def test_insert_and_get_active(store):
    """Test session creation."""
    session = store.insert(ChatSession(user_id="u1"))

    active = store.get_active("u1")

    assert active is not None
    assert active.id == session.id
    assert active.is_active is True


def test_rotate_leaves_exactly_one_active_session(store):
    """Test rotation keeps one active session."""
    first = store.rotate(ChatSession(user_id="u1"))
    second = store.rotate(ChatSession(user_id="u1"))
    third = store.rotate(ChatSession(user_id="u1"))

    active = store.get_active("u1")

    assert active.id == third.id
    assert active.id not in (first.id, second.id)
    # Deactivating again proves no other session was still active
    assert store.deactivate_all("u1") == 1


def test_rotate_does_not_touch_other_users(store):
    """Test rotation is scoped to one user."""
    other = store.rotate(ChatSession(user_id="u2"))
    store.rotate(ChatSession(user_id="u1"))

    assert store.get_active("u2").id == other.id


def test_deactivate_all_leaves_no_active_session(store):
    """Test deactivating every session of a user."""
    store.insert(ChatSession(user_id="u1"))
    store.insert(ChatSession(user_id="u1"))

    count = store.deactivate_all("u1")

    assert count == 2
    assert store.get_active("u1") is None


def test_update_token(store):
    """Test binding a webhook token."""
    session = store.rotate(ChatSession(user_id="u1"))

    updated = store.update_token(session, "s1")

    assert updated.webhook_session_token == "s1"
    assert store.get_active("u1").webhook_session_token == "s1"


def test_delete_for_user(store):
    """Test deletion is scoped to one user."""
    store.rotate(ChatSession(user_id="u1"))
    store.rotate(ChatSession(user_id="u1"))
    store.rotate(ChatSession(user_id="u2"))

    deleted = store.delete_for_user("u1")

    assert deleted == 2
    assert store.get_active("u1") is None
    assert store.get_active("u2") is not None


def test_sqlite_list_for_user_includes_inactive(db):
    """Test listing returns inactive sessions too."""
    store = SqliteSessionStore(db)
    first = store.rotate(ChatSession(user_id="u1"))
    second = store.rotate(ChatSession(user_id="u1"))

    sessions = store.list_for_user("u1")

    assert [s.id for s in sessions] == [first.id, second.id]
    assert [s.is_active for s in sessions] == [False, True]


def test_sqlite_rotate_is_atomic(db):
    """A failing insert must not leave the old session deactivated."""
    store = SqliteSessionStore(db)
    original = store.rotate(ChatSession(user_id="u1"))

    # Same primary key -> insert fails after the deactivate step
    with pytest.raises(StoreUnavailableError):
        store.rotate(ChatSession(id=original.id, user_id="u1"))

    assert store.get_active("u1").id == original.id


def test_sqlite_persists_across_connections(tmp_path):
    """Test sessions survive reopening the database."""
    db_path = tmp_path / "alpo.db"
    db1 = Database(db_path)
    session = SqliteSessionStore(db1).rotate(ChatSession(user_id="u1"))
    db1.close()

    db2 = Database(db_path)
    active = SqliteSessionStore(db2).get_active("u1")
    db2.close()

    assert active.id == session.id


def test_sqlite_error_is_wrapped(db):
    """Test sqlite errors become StoreUnavailableError."""
    store = SqliteSessionStore(db)
    db.connection.execute("DROP TABLE chat_messages")
    db.connection.execute("DROP TABLE chat_sessions")

    with pytest.raises(StoreUnavailableError) as exc_info:
        store.get_active("u1")

    assert isinstance(exc_info.value.original_error, sqlite3.Error)


def test_local_delete_for_user_removes_corrupt_records():
    """Test local session records that no longer parse can still be deleted."""
    kv = InMemoryKeyValueStore()
    kv.set(f"{SESSION_KEY_PREFIX}u1", [{"garbage": True}, "not a session"])
    store = LocalSessionStore(kv)
    with pytest.raises(StoreUnavailableError):
        store.get_active("u1")

    deleted = store.delete_for_user("u1")

    assert deleted == 2
    assert kv.get(f"{SESSION_KEY_PREFIX}u1") is None
    assert store.get_active("u1") is None
