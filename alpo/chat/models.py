"""Pydantic models for the chat core.

This module defines the data shared between the stores, the manager and the
UI layer:
- User: identity handed in by the auth collaborator (immutable)
- ChatSession: one conversation with the remote agent, bound to a webhook token
- ChatMessage: a single rendered chat bubble
- WebhookRequest / WebhookResponse: the canonical wire contract
- OutboundAttempt: entry in the manager's bounded retry log

Wire contract:
The webhook speaks camelCase (`agentMessage`, `sessionId`). Older agent
deployments answered with `sessionID`; both spellings are accepted on input
and normalized to `session_id`, so nothing past the gateway ever sees the
raw field names.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

WEBHOOK_CONTRACT_VERSION = "1"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_message_id() -> str:
    """Create a unique message id that sorts in creation order.

    Format: `<epoch milliseconds, 13 digits>-<8 hex chars>`. The random
    suffix keeps ids unique when several messages share a millisecond.
    """
    return f"{int(time.time() * 1000):013d}-{secrets.token_hex(4)}"


class User(BaseModel):
    """Signed-in user.

    Attributes:
        id: User identifier
        email: Optional contact address
        role: Role name (e.g. "user", "admin")
        access_code: Code the user signed in with
        housing_company_ids: Housing companies whose news the user may see
    """

    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    role: str = "user"
    access_code: str = ""
    housing_company_ids: FrozenSet[str] = Field(default_factory=frozenset)


class ChatSession(BaseModel):
    """Conversation with the remote agent.

    Attributes:
        id: Local session identifier (UUID)
        user_id: Owner of the session
        webhook_session_token: Opaque token issued by the agent, None until
            the first reply arrives
        created_at: Session creation timestamp
        updated_at: Last activity timestamp
        is_active: Only one session per user is active at a time
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    webhook_session_token: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    is_active: bool = True


class ChatMessage(BaseModel):
    """Single chat message.

    Attributes:
        id: Unique id (see `generate_message_id`)
        text: Message body
        is_user: True for the user's own messages, False for agent replies
        timestamp: Creation time; history is ordered by it
        user_id: Owner of the conversation
        session_id: ChatSession the message belongs to
    """

    id: str = Field(default_factory=generate_message_id)
    text: str
    is_user: bool
    timestamp: datetime = Field(default_factory=utc_now)
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class WebhookRequest(BaseModel):
    """Outbound request body. `session_id` is omitted on the first message."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: Optional[str] = Field(None, alias="sessionId")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class WebhookResponse(BaseModel):
    """Agent reply as returned to the UI layer."""

    agent_message: str = Field(
        validation_alias=AliasChoices("agentMessage", "agent_message"),
        serialization_alias="agentMessage",
    )
    session_id: str = Field(
        validation_alias=AliasChoices("sessionId", "sessionID", "session_id"),
        serialization_alias="sessionId",
        min_length=1,
    )


class AttemptStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OutboundAttempt(BaseModel):
    """One `send_message` call as recorded in the retry log."""

    text: str
    session_id: Optional[str] = None
    attempted_at: datetime = Field(default_factory=utc_now)
    status: AttemptStatus = AttemptStatus.PENDING
    error: Optional[str] = None


def sort_messages(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
    """Order by timestamp ascending; ties keep their incoming order."""
    return sorted(messages, key=lambda m: m.timestamp)


def dedupe_messages(
    messages: Iterable[ChatMessage],
    logger: Optional[logging.Logger] = None,
) -> List[ChatMessage]:
    """Drop repeated ids and give id-less messages a fresh one.

    The first occurrence of an id wins. Every anomaly is logged as a warning
    so corrupted history can be traced.
    """
    seen = set()
    result: List[ChatMessage] = []
    for message in messages:
        if not message.id:
            message = message.model_copy(update={"id": generate_message_id()})
            if logger:
                logger.warning(
                    "chat.message.missing_id",
                    extra={"extra_data": {"assigned_id": message.id}},
                )
        if message.id in seen:
            if logger:
                logger.warning(
                    "chat.message.duplicate_id",
                    extra={"extra_data": {"message_id": message.id}},
                )
            continue
        seen.add(message.id)
        result.append(message)
    return result
