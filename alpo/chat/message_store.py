"""Chat message persistence.

- LocalMessageStore: offline mirror in the key-value store, one list per
  user under `chat_messages:<user_id>`
- SqliteMessageStore: the relational `chat_messages` table

History is returned ordered by timestamp; messages sharing a timestamp keep
their insertion order.
"""

from typing import Iterable, List, Protocol

from alpo.chat.models import ChatMessage, sort_messages
from alpo.exceptions import StoreUnavailableError
from alpo.storage.database import Database, from_db_timestamp, to_db_timestamp
from alpo.storage.kv_store import KeyValueStore
from alpo.utils.logger import LoggerManager

MESSAGES_KEY_PREFIX = "chat_messages:"


class MessageStore(Protocol):
    def add_many(self, messages: Iterable[ChatMessage]) -> None: ...

    def list_for_session(self, user_id: str, session_id: str) -> List[ChatMessage]: ...

    def delete_for_user(self, user_id: str) -> int: ...


def _require_owner(message: ChatMessage) -> None:
    if not message.user_id or not message.session_id:
        raise ValueError(f"Message {message.id} has no user_id/session_id")


class LocalMessageStore:
    """Messages mirrored in the local key-value store."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self.logger = LoggerManager.get_logger(__name__)

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{MESSAGES_KEY_PREFIX}{user_id}"

    def _read(self, user_id: str) -> List[ChatMessage]:
        raw = self.kv.get(self._key(user_id)) or []
        try:
            return [ChatMessage.model_validate(item) for item in raw]
        except (TypeError, ValueError) as e:
            raise StoreUnavailableError.from_backend_error("read_messages", e) from e

    def add_many(self, messages: Iterable[ChatMessage]) -> None:
        by_user = {}
        for message in messages:
            _require_owner(message)
            by_user.setdefault(message.user_id, []).append(message)

        for user_id, new_messages in by_user.items():
            stored = self._read(user_id)
            stored.extend(new_messages)
            self.kv.set(self._key(user_id), [m.model_dump(mode="json") for m in stored])
            self.logger.debug(
                "messages.saved",
                extra={"extra_data": {"user_id": user_id, "count": len(new_messages)}},
            )

    def list_for_session(self, user_id: str, session_id: str) -> List[ChatMessage]:
        return sort_messages(m for m in self._read(user_id) if m.session_id == session_id)

    def delete_for_user(self, user_id: str) -> int:
        # Count raw entries so a corrupt mirror can still be deleted
        raw = self.kv.get(self._key(user_id))
        count = len(raw) if isinstance(raw, list) else 0
        self.kv.remove(self._key(user_id))
        return count


class SqliteMessageStore:
    """Messages in the relational `chat_messages` table."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = LoggerManager.get_logger(__name__)

    def add_many(self, messages: Iterable[ChatMessage]) -> None:
        """Insert messages in order within one transaction.

        Raises:
            ValueError: If a message is not bound to a user and session
            StoreUnavailableError: If the insert fails (nothing is written)
        """
        messages = list(messages)
        for message in messages:
            _require_owner(message)

        with self.db.transaction("add_messages") as conn:
            conn.executemany(
                """
                INSERT INTO chat_messages
                (id, session_id, user_id, text, is_user, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        m.id,
                        m.session_id,
                        m.user_id,
                        m.text,
                        int(m.is_user),
                        to_db_timestamp(m.timestamp),
                    )
                    for m in messages
                ],
            )
            if messages:
                conn.execute(
                    "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                    (to_db_timestamp(messages[-1].timestamp), messages[-1].session_id),
                )

        self.logger.debug("messages.saved", extra={"extra_data": {"count": len(messages)}})

    def list_for_session(self, user_id: str, session_id: str) -> List[ChatMessage]:
        with self.db.transaction("list_messages") as conn:
            rows = conn.execute(
                """
                SELECT id, session_id, user_id, text, is_user, timestamp
                FROM chat_messages
                WHERE user_id = ? AND session_id = ?
                ORDER BY timestamp ASC, rowid ASC
                """,
                (user_id, session_id),
            ).fetchall()

        return [
            ChatMessage(
                id=row["id"],
                session_id=row["session_id"],
                user_id=row["user_id"],
                text=row["text"],
                is_user=bool(row["is_user"]),
                timestamp=from_db_timestamp(row["timestamp"]),
            )
            for row in rows
        ]

    def delete_for_user(self, user_id: str) -> int:
        with self.db.transaction("delete_messages") as conn:
            cursor = conn.execute("DELETE FROM chat_messages WHERE user_id = ?", (user_id,))
            return cursor.rowcount
