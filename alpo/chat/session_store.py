"""Chat session persistence.

Two backends implement the same operations:
- LocalSessionStore: session records in the device key-value store
  (key `chat_session:<user_id>`), used when no relational store is configured
- SqliteSessionStore: the `chat_sessions` table of the relational store

Rotation (`rotate`) always deactivates every active session of the user
before inserting the new one. The SQLite backend runs both steps in one
transaction; the local backend writes a single key, so the two steps land
together.
"""

from typing import List, Optional, Protocol

from alpo.chat.models import ChatSession, utc_now
from alpo.exceptions import StoreUnavailableError
from alpo.storage.database import Database, from_db_timestamp, to_db_timestamp
from alpo.storage.kv_store import KeyValueStore
from alpo.utils.logger import LoggerManager

SESSION_KEY_PREFIX = "chat_session:"


class SessionStore(Protocol):
    def get_active(self, user_id: str) -> Optional[ChatSession]: ...

    def insert(self, session: ChatSession) -> ChatSession: ...

    def deactivate_all(self, user_id: str) -> int: ...

    def rotate(self, session: ChatSession) -> ChatSession: ...

    def update_token(self, session: ChatSession, token: str) -> ChatSession: ...

    def delete_for_user(self, user_id: str) -> int: ...


class LocalSessionStore:
    """Session records kept in the local key-value store."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self.logger = LoggerManager.get_logger(__name__)

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{user_id}"

    def _read(self, user_id: str) -> List[ChatSession]:
        raw = self.kv.get(self._key(user_id)) or []
        try:
            return [ChatSession.model_validate(item) for item in raw]
        except (TypeError, ValueError) as e:
            raise StoreUnavailableError.from_backend_error("read_sessions", e) from e

    def _write(self, user_id: str, sessions: List[ChatSession]) -> None:
        self.kv.set(self._key(user_id), [s.model_dump(mode="json") for s in sessions])

    def get_active(self, user_id: str) -> Optional[ChatSession]:
        active = [s for s in self._read(user_id) if s.is_active]
        if not active:
            return None
        return max(active, key=lambda s: s.created_at)

    def insert(self, session: ChatSession) -> ChatSession:
        sessions = self._read(session.user_id)
        sessions.append(session)
        self._write(session.user_id, sessions)
        return session

    def deactivate_all(self, user_id: str) -> int:
        sessions = self._read(user_id)
        count = 0
        now = utc_now()
        for i, s in enumerate(sessions):
            if s.is_active:
                sessions[i] = s.model_copy(update={"is_active": False, "updated_at": now})
                count += 1
        if count:
            self._write(user_id, sessions)
        return count

    def rotate(self, session: ChatSession) -> ChatSession:
        sessions = self._read(session.user_id)
        now = utc_now()
        deactivated = [
            s.model_copy(update={"is_active": False, "updated_at": now}) if s.is_active else s
            for s in sessions
        ]
        deactivated.append(session)
        self._write(session.user_id, deactivated)
        self.logger.info(
            "session.rotated",
            extra={"extra_data": {"user_id": session.user_id, "session_id": session.id}},
        )
        return session

    def update_token(self, session: ChatSession, token: str) -> ChatSession:
        sessions = self._read(session.user_id)
        updated = session.model_copy(
            update={"webhook_session_token": token, "updated_at": utc_now()}
        )
        for i, s in enumerate(sessions):
            if s.id == session.id:
                sessions[i] = updated
                break
        else:
            sessions.append(updated)
        self._write(session.user_id, sessions)
        return updated

    def delete_for_user(self, user_id: str) -> int:
        # Count raw entries so a corrupt mirror can still be deleted
        raw = self.kv.get(self._key(user_id))
        count = len(raw) if isinstance(raw, list) else 0
        self.kv.remove(self._key(user_id))
        return count


class SqliteSessionStore:
    """Session rows in the relational `chat_sessions` table."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = LoggerManager.get_logger(__name__)

    @staticmethod
    def _row_to_session(row) -> ChatSession:
        return ChatSession(
            id=row["id"],
            user_id=row["user_id"],
            webhook_session_token=row["webhook_session_id"],
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
            is_active=bool(row["is_active"]),
        )

    def get_active(self, user_id: str) -> Optional[ChatSession]:
        """Most recently created active session of the user, if any."""
        with self.db.transaction("get_active_session") as conn:
            row = conn.execute(
                """
                SELECT id, user_id, webhook_session_id, created_at, updated_at, is_active
                FROM chat_sessions
                WHERE user_id = ? AND is_active = 1
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def list_for_user(self, user_id: str) -> List[ChatSession]:
        with self.db.transaction("list_sessions") as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, webhook_session_id, created_at, updated_at, is_active
                FROM chat_sessions
                WHERE user_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    @staticmethod
    def _insert(conn, session: ChatSession) -> None:
        conn.execute(
            """
            INSERT INTO chat_sessions
            (id, user_id, webhook_session_id, created_at, updated_at, is_active)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                session.id,
                session.user_id,
                session.webhook_session_token,
                to_db_timestamp(session.created_at),
                to_db_timestamp(session.updated_at),
                int(session.is_active),
            ),
        )

    @staticmethod
    def _deactivate_all(conn, user_id: str) -> int:
        cursor = conn.execute(
            """
            UPDATE chat_sessions
            SET is_active = 0, updated_at = ?
            WHERE user_id = ? AND is_active = 1
            """,
            (to_db_timestamp(utc_now()), user_id),
        )
        return cursor.rowcount

    def insert(self, session: ChatSession) -> ChatSession:
        with self.db.transaction("insert_session") as conn:
            self._insert(conn, session)
        return session

    def deactivate_all(self, user_id: str) -> int:
        with self.db.transaction("deactivate_sessions") as conn:
            return self._deactivate_all(conn, user_id)

    def rotate(self, session: ChatSession) -> ChatSession:
        """Deactivate the user's active sessions, then insert `session`, atomically."""
        with self.db.transaction("rotate_session") as conn:
            deactivated = self._deactivate_all(conn, session.user_id)
            self._insert(conn, session)

        self.logger.info(
            "session.rotated",
            extra={
                "extra_data": {
                    "user_id": session.user_id,
                    "session_id": session.id,
                    "deactivated": deactivated,
                }
            },
        )
        return session

    def update_token(self, session: ChatSession, token: str) -> ChatSession:
        updated = session.model_copy(
            update={"webhook_session_token": token, "updated_at": utc_now()}
        )
        with self.db.transaction("update_session_token") as conn:
            conn.execute(
                """
                UPDATE chat_sessions
                SET webhook_session_id = ?, updated_at = ?
                WHERE id = ?
                """,
                (token, to_db_timestamp(updated.updated_at), session.id),
            )
        return updated

    def delete_for_user(self, user_id: str) -> int:
        with self.db.transaction("delete_sessions") as conn:
            conn.execute(
                """
                DELETE FROM chat_messages
                WHERE session_id IN (SELECT id FROM chat_sessions WHERE user_id = ?)
                """,
                (user_id,),
            )
            cursor = conn.execute("DELETE FROM chat_sessions WHERE user_id = ?", (user_id,))
            return cursor.rowcount
