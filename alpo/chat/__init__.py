"""Chat session management module.

Provides the chat side of the core:
- Pydantic models for users, sessions, messages and the webhook contract
- Session and message stores (local key-value and SQLite backends)
- WebhookGateway for the remote agent
- ChatSessionManager orchestrating the session and message lifecycle
"""

from alpo.chat.gateway import WebhookGateway
from alpo.chat.manager import ChatSessionManager
from alpo.chat.models import ChatMessage, ChatSession, User, WebhookRequest, WebhookResponse

__all__ = [
    "ChatMessage",
    "ChatSession",
    "ChatSessionManager",
    "User",
    "WebhookGateway",
    "WebhookRequest",
    "WebhookResponse",
]
