"""Custom exceptions for the Alpo chat core."""


class ChatCoreError(Exception):
    """Base class for errors surfaced to the UI layer.

    `str(error)` is always safe to show to the user; the underlying cause,
    when there is one, is kept on `original_error` for logging.
    """

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class NoSessionError(ChatCoreError):
    """Raised when an operation needs a signed-in user with an active session.

    The caller must call `ChatSessionManager.set_user()` first.
    """

    def __init__(self, message: str = "No active chat session. Please sign in again."):
        super().__init__(message)


class SendFailedError(ChatCoreError):
    """Exception raised when a message cannot be delivered to the agent.

    Causes include:
    - Network errors or timeouts
    - Non-2xx responses from the webhook
    - A response body that does not match the wire contract

    Recoverable: the user may retry (see `ChatSessionManager.retry_last`).
    """

    USER_MESSAGE = "Failed to send message. Please check your connection and try again."

    @classmethod
    def from_http_status(cls, status_code: int) -> "SendFailedError":
        """Create error for a non-2xx webhook response."""
        error = RuntimeError(f"HTTP error! status: {status_code}")
        instance = cls(cls.USER_MESSAGE, original_error=error)
        instance.status_code = status_code
        return instance

    @classmethod
    def from_network_error(cls, error: Exception) -> "SendFailedError":
        """Create error for connection failures and timeouts."""
        return cls(cls.USER_MESSAGE, original_error=error)

    @classmethod
    def from_invalid_response(cls, error: Exception) -> "SendFailedError":
        """Create error for bodies that are not valid JSON or miss required fields."""
        return cls(
            "The assistant returned an unexpected response. Please try again.",
            original_error=error,
        )


class StoreUnavailableError(ChatCoreError):
    """Raised when a persistence backend cannot be read or written.

    Load paths catch this and degrade to empty results; destructive and
    user-triggered writes let it propagate.
    """

    @classmethod
    def from_backend_error(cls, operation: str, error: Exception) -> "StoreUnavailableError":
        """Wrap a backend exception raised while performing `operation`."""
        return cls(
            f"Storage is unavailable ({operation}). Please try again later.",
            original_error=error,
        )


class NothingToRetryError(ChatCoreError):
    """Raised by `retry_last()` when no outbound attempt has been recorded."""

    def __init__(self, message: str = "There is no message to resend."):
        super().__init__(message)
