"""Tests for Database and UserRepository."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from alpo.exceptions import StoreUnavailableError
from alpo.news.repository import NewsRepository
from alpo.storage.database import IN_MEMORY, Database, from_db_timestamp, to_db_timestamp
from alpo.storage.users import UserRepository


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "data" / "alpo.db")
    NewsRepository(database).add_housing_company("hc1", "Asunto Oy Koivu")
    NewsRepository(database).add_housing_company("hc2", "Asunto Oy Kuusi")
    yield database
    database.close()


def test_database_creates_parent_directory(tmp_path):
    """Test the database directory is created."""
    db = Database(tmp_path / "nested" / "dir" / "alpo.db")
    assert (tmp_path / "nested" / "dir" / "alpo.db").exists()
    db.close()


def test_in_memory_database_has_schema():
    """Test the schema is applied to in-memory databases."""
    db = Database(IN_MEMORY)
    tables = {
        row["name"]
        for row in db.connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    db.close()

    assert {"users", "chat_sessions", "chat_messages", "news"} <= tables


def test_foreign_keys_are_enforced(db):
    """Test foreign key enforcement."""
    with pytest.raises(StoreUnavailableError) as exc_info:
        with db.transaction("orphan") as conn:
            conn.execute(
                "INSERT INTO user_housing_companies (user_id, housing_company_id) VALUES (?, ?)",
                ("ghost", "hc1"),
            )

    assert isinstance(exc_info.value.original_error, sqlite3.IntegrityError)


def test_timestamps_sort_as_text():
    """Test stored timestamps sort chronologically as text."""
    base = datetime(2026, 1, 1, 23, 59, 59, 999999, tzinfo=timezone.utc)
    later = base + timedelta(microseconds=1)

    assert to_db_timestamp(base) < to_db_timestamp(later)
    assert from_db_timestamp(to_db_timestamp(base)) == base


def test_find_by_access_code(db):
    """Test user lookup by access code."""
    users = UserRepository(db)
    users.add_user("u1", "USER456", email="resident@example.test", housing_company_ids=["hc1", "hc2"])

    user = users.find_by_access_code("USER456")

    assert user.id == "u1"
    assert user.role == "user"
    assert user.email == "resident@example.test"
    assert user.housing_company_ids == frozenset({"hc1", "hc2"})


def test_find_by_unknown_code_returns_none(db):
    """Test lookup with an unknown code."""
    assert UserRepository(db).find_by_access_code("WRONG") is None


def test_user_without_housing_companies(db):
    """Test a user with no company assignments."""
    users = UserRepository(db)
    users.add_user("admin", "ADMIN123", role="admin")

    user = users.find_by_access_code("ADMIN123")

    assert user.role == "admin"
    assert user.housing_company_ids == frozenset()


def test_assign_housing_company_is_idempotent(db):
    """Test repeated assignment is harmless."""
    users = UserRepository(db)
    users.add_user("u1", "USER456", housing_company_ids=["hc1"])

    users.assign_housing_company("u1", "hc2")
    users.assign_housing_company("u1", "hc2")

    assert users.find_by_access_code("USER456").housing_company_ids == frozenset({"hc1", "hc2"})


def test_duplicate_access_code_is_rejected(db):
    """Test access codes are unique."""
    users = UserRepository(db)
    users.add_user("u1", "USER456")

    with pytest.raises(StoreUnavailableError):
        users.add_user("u2", "USER456")

    assert users.find_by_access_code("USER456").id == "u1"
