"""Chat session and message lifecycle manager.

`ChatSessionManager` is the single authority over which session is active for
the signed-in user and what the conversation so far looks like. The UI layer
calls it; it talks to the webhook through `WebhookGateway` and persists state
through a session store and a message store.

Store selection:
- A configured `Database` selects the relational stores (source of truth,
  multi-device)
- Otherwise the local key-value stores are used (single device, offline)

Session policy (eager):
`set_user(user)` immediately rotates the user's sessions: every active
session is deactivated, then a fresh one is inserted. The webhook token of the
new session stays empty until the agent's first reply, at which point it is
bound to the session record. `send_message` resolves the token lazily and, if
no session is cached in memory, looks up the most recent active session in
the store before giving up with NoSessionError.

Failure policy:
- Reads (`load_messages`, `get_session_id`) never raise
- `send_message` raises NoSessionError / SendFailedError; a failed send leaves
  history and token untouched and is never retried automatically
- An exchange the store rejects after a successful reply stays part of the
  history returned by `load_messages` while that session stays active
- Webhook tokens are never written to logs
- `clear_user_chat_history` raises StoreUnavailableError
"""

from collections import deque
from typing import Deque, List, Optional

from alpo.chat.gateway import WebhookGateway
from alpo.chat.message_store import LocalMessageStore, MessageStore, SqliteMessageStore
from alpo.chat.models import (
    AttemptStatus,
    ChatMessage,
    ChatSession,
    OutboundAttempt,
    User,
    WebhookRequest,
    WebhookResponse,
    dedupe_messages,
    sort_messages,
)
from alpo.chat.session_store import LocalSessionStore, SessionStore, SqliteSessionStore
from alpo.exceptions import (
    NoSessionError,
    NothingToRetryError,
    SendFailedError,
    StoreUnavailableError,
)
from alpo.storage.database import Database
from alpo.storage.kv_store import KeyValueStore
from alpo.utils.logger import LoggerManager, with_context

DEFAULT_RETRY_LOG_SIZE = 10


class ChatSessionManager:
    """Owns session identity and message history for the current user.

    Attributes:
        gateway: Client for the agent webhook
        backend: "remote" when backed by the relational store, else "local"
    """

    def __init__(
        self,
        gateway: WebhookGateway,
        local_store: Optional[KeyValueStore] = None,
        database: Optional[Database] = None,
        retry_log_size: int = DEFAULT_RETRY_LOG_SIZE,
        session_store: Optional[SessionStore] = None,
        message_store: Optional[MessageStore] = None,
    ):
        """Initialize the manager and pick its stores.

        Args:
            gateway: Agent webhook client
            local_store: Device key-value store, used when no database is given
            database: Relational store; takes precedence over `local_store`
            retry_log_size: Number of outbound attempts kept for `retry_last`
            session_store: Explicit session store (overrides selection)
            message_store: Explicit message store (overrides selection)

        Raises:
            ValueError: If neither a database, a local store nor explicit
                stores are provided
        """
        self.gateway = gateway
        self.logger = LoggerManager.get_logger(__name__)
        self._log = with_context(self.logger)

        if database is not None:
            self.backend = "remote"
            self._sessions = session_store or SqliteSessionStore(database)
            self._message_store = message_store or SqliteMessageStore(database)
        elif local_store is not None:
            self.backend = "local"
            self._sessions = session_store or LocalSessionStore(local_store)
            self._message_store = message_store or LocalMessageStore(local_store)
        elif session_store is not None and message_store is not None:
            self.backend = "custom"
            self._sessions = session_store
            self._message_store = message_store
        else:
            raise ValueError("ChatSessionManager needs a database, a local store or explicit stores")

        self._user: Optional[User] = None
        self._session: Optional[ChatSession] = None
        self._messages: List[ChatMessage] = []
        # Exchanges the store rejected; merged back into every load
        self._unpersisted: List[ChatMessage] = []
        self._attempts: Deque[OutboundAttempt] = deque(maxlen=retry_log_size)

    # ------------------------------------------------------------------
    # Read-only state for the UI layer
    # ------------------------------------------------------------------

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def session(self) -> Optional[ChatSession]:
        return self._session

    @property
    def messages(self) -> List[ChatMessage]:
        """Conversation as last loaded or extended by sends (copy)."""
        return list(self._messages)

    @property
    def attempts(self) -> List[OutboundAttempt]:
        """Recent outbound attempts, oldest first (copy)."""
        return list(self._attempts)

    def get_session_id(self) -> Optional[str]:
        """Current webhook session token, or None before the first reply."""
        if self._session is None:
            return None
        return self._session.webhook_session_token

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def set_user(self, user: Optional[User]) -> None:
        """Switch the signed-in user.

        A non-null user starts a new session right away; None only drops the
        in-memory references (persisted data is kept).

        Raises:
            StoreUnavailableError: If the new session cannot be persisted
        """
        if user is None:
            self.clear_user_data()
            return

        self._user = user
        self._session = None
        self._messages = []
        self._unpersisted = []
        self._attempts.clear()
        self._log = with_context(self.logger, user_id=user.id, backend=self.backend)
        await self.start_new_session()

    async def start_new_session(self) -> ChatSession:
        """Deactivate the user's active sessions, then create a fresh one.

        Raises:
            NoSessionError: If no user is set
            StoreUnavailableError: If the store rejects the rotation
        """
        if self._user is None:
            raise NoSessionError()

        session = ChatSession(user_id=self._user.id)
        try:
            self._sessions.rotate(session)
        except StoreUnavailableError:
            self._log.error("chat.session.start.fail", exc_info=True)
            raise

        self._session = session
        self._messages = []
        self._log.info("chat.session.started", extra={"extra_data": {"session_id": session.id}})
        return session

    def clear_user_data(self) -> None:
        """Forget the user and session in memory (logout). Nothing is deleted."""
        if self._user is not None:
            self._log.info("chat.user.cleared")
        self._user = None
        self._session = None
        self._messages = []
        self._unpersisted = []
        self._attempts.clear()
        self._log = with_context(self.logger)

    async def clear_user_chat_history(self) -> None:
        """Delete every persisted message and session of the user.

        Irreversible. A fresh session is started afterwards so the user can
        keep chatting.

        Raises:
            NoSessionError: If no user is set
            StoreUnavailableError: If deletion fails
        """
        if self._user is None:
            raise NoSessionError()

        user_id = self._user.id
        try:
            deleted_messages = self._message_store.delete_for_user(user_id)
            deleted_sessions = self._sessions.delete_for_user(user_id)
        except StoreUnavailableError:
            self._log.error("chat.history.clear.fail", exc_info=True)
            raise

        self._log.info(
            "chat.history.cleared",
            extra={"extra_data": {"messages": deleted_messages, "sessions": deleted_sessions}},
        )
        self._session = None
        self._messages = []
        self._unpersisted = []
        self._attempts.clear()
        await self.start_new_session()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def load_messages(self) -> List[ChatMessage]:
        """Full ordered history of the active session.

        Returns an empty list when no user or session exists or the store is
        unreachable. Never raises.
        """
        if self._user is None:
            return []

        try:
            session = self._session or self._sessions.get_active(self._user.id)
            if session is None:
                return []
            stored = self._message_store.list_for_session(self._user.id, session.id)
        except StoreUnavailableError as e:
            self._log.warning("chat.messages.load.fail", extra={"extra_data": {"error": str(e)}})
            return []

        self._session = session
        pending = [m for m in self._unpersisted if m.session_id == session.id]
        self._messages = dedupe_messages(sort_messages(list(stored) + pending), self.logger)
        self._log.debug(
            "chat.messages.loaded", extra={"extra_data": {"count": len(self._messages)}}
        )
        return list(self._messages)

    async def _resolve_session(self) -> ChatSession:
        """Return the active session, consulting the store if the cached one
        has no token yet or nothing is cached."""
        if self._session is not None and self._session.webhook_session_token:
            return self._session

        try:
            stored = self._sessions.get_active(self._user.id)
        except StoreUnavailableError as e:
            self._log.warning("chat.session.lookup.fail", extra={"extra_data": {"error": str(e)}})
            stored = None

        if stored is not None and (self._session is None or stored.id == self._session.id):
            self._session = stored

        if self._session is None:
            raise NoSessionError()
        return self._session

    def _bind_token(self, session: ChatSession, token: str) -> ChatSession:
        try:
            session = self._sessions.update_token(session, token)
        except StoreUnavailableError as e:
            # Keep the token in memory so the conversation can continue
            self._log.error(
                "chat.session.token.persist_fail", extra={"extra_data": {"error": str(e)}}
            )
            session = session.model_copy(update={"webhook_session_token": token})
        self._session = session
        self._log.info(
            "chat.session.token.bound",
            extra={"extra_data": {"session_id": session.id}},
        )
        return session

    async def send_message(self, text: str) -> WebhookResponse:
        """Send one user message to the agent and record the exchange.

        Args:
            text: Message typed by the user (surrounding whitespace is trimmed)

        Returns:
            WebhookResponse with the agent reply and current session token

        Raises:
            NoSessionError: If no user or active session exists
            ValueError: If the text is empty after trimming
            SendFailedError: If the webhook call fails; nothing is persisted
        """
        if self._user is None:
            raise NoSessionError()

        message_text = text.strip()
        if not message_text:
            raise ValueError("Message text must not be empty")

        session = await self._resolve_session()
        token = session.webhook_session_token

        attempt = OutboundAttempt(text=message_text, session_id=token)
        self._attempts.append(attempt)
        user_message = ChatMessage(
            text=message_text,
            is_user=True,
            user_id=self._user.id,
            session_id=session.id,
        )

        try:
            reply = await self.gateway.send(WebhookRequest(message=message_text, session_id=token))
        except SendFailedError as e:
            attempt.status = AttemptStatus.FAILED
            attempt.error = str(e)
            self._log.warning(
                "chat.send.fail",
                extra={"extra_data": {"session_id": session.id, "cause": repr(e.original_error)}},
            )
            raise

        attempt.status = AttemptStatus.SUCCEEDED
        if reply.session_id != token:
            session = self._bind_token(session, reply.session_id)

        agent_message = ChatMessage(
            text=reply.agent_message,
            is_user=False,
            user_id=self._user.id,
            session_id=session.id,
        )
        exchange = [user_message, agent_message]
        try:
            self._message_store.add_many(exchange)
        except StoreUnavailableError as e:
            # The agent already answered; keep the exchange visible for this run
            self._log.error("chat.messages.persist_fail", extra={"extra_data": {"error": str(e)}})
            self._unpersisted.extend(exchange)

        self._messages.extend(exchange)
        self._log.info(
            "chat.send.ok",
            extra={"extra_data": {"session_id": session.id}},
        )
        return reply

    async def retry_last(self) -> WebhookResponse:
        """Resend the text of the most recent outbound attempt.

        Equivalent to a new `send_message` call; a successful retry of an
        attempt that had already succeeded produces a second exchange.

        Raises:
            NothingToRetryError: If nothing has been sent in this session
            NoSessionError, SendFailedError: As for `send_message`
        """
        if not self._attempts:
            raise NothingToRetryError()
        last = self._attempts[-1]
        self._log.info("chat.send.retry", extra={"extra_data": {"previous_status": last.status.value}})
        return await self.send_message(last.text)
