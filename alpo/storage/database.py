"""SQLite-backed relational store.

Holds the tables shared by the chat and news repositories (see schema.sql):
users, housing_companies, user_housing_companies, chat_sessions,
chat_messages, news.

The connection is opened lazily with foreign keys enabled. It may be used from
worker threads (see `NewsRepository`); `transaction()` holds a lock so units
of work never interleave on the shared connection. Repositories run
their statements through `transaction()`, which commits on success, rolls
back on error and re-raises any sqlite3 failure as StoreUnavailableError.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from alpo.exceptions import StoreUnavailableError
from alpo.utils.logger import LoggerManager

IN_MEMORY = ":memory:"


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime as a sortable UTC ISO string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """Lazily connected SQLite database.

    Attributes:
        db_path: Path to SQLite database file, or ":memory:"
        _conn: SQLite connection (lazy-loaded)
    """

    def __init__(self, db_path: Path | str):
        """Initialize the database wrapper and make sure the schema exists.

        Args:
            db_path: Path to SQLite database (created if not exists)

        Raises:
            StoreUnavailableError: If the file cannot be opened or the schema
                cannot be applied
        """
        self.db_path = db_path if db_path == IN_MEMORY else Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self.logger = LoggerManager.get_logger(__name__)
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        """Get or create database connection with foreign keys enabled."""
        if self._conn is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, encoding="utf-8") as f:
            schema = f.read()

        try:
            conn = self.connection
            conn.executescript(schema)
            conn.commit()
        except sqlite3.Error as e:
            self.logger.error(
                "db.schema.fail",
                extra={"extra_data": {"db_path": str(self.db_path), "error": str(e)}},
            )
            raise StoreUnavailableError.from_backend_error("schema", e) from e

        self.logger.info(
            "db.schema.ready", extra={"extra_data": {"db_path": str(self.db_path)}}
        )

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a unit of work atomically.

        Args:
            operation: Short label used in logs and error messages

        Yields:
            The open connection

        Raises:
            StoreUnavailableError: On any sqlite3 error (after rollback)
        """
        with self._lock:
            try:
                conn = self.connection
            except sqlite3.Error as e:
                raise StoreUnavailableError.from_backend_error(operation, e) from e

            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                self.logger.error(
                    "db.transaction.fail",
                    extra={"extra_data": {"operation": operation, "error": str(e)}},
                )
                raise StoreUnavailableError.from_backend_error(operation, e) from e
            except BaseException:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
