"""Remote agent gateway.

Posts a chat message to the conversational-agent webhook and returns the
normalized reply.

Wire format:
    POST <webhook_url>
    {"message": "...", "sessionId": "..."}      # sessionId omitted on first turn
    -> 2xx {"agentMessage": "...", "sessionId": "..."}

Any transport error, timeout, non-2xx status or malformed body is raised as
SendFailedError. The gateway never retries.
"""

from typing import Optional

import httpx
from pydantic import ValidationError

from alpo.chat.models import WEBHOOK_CONTRACT_VERSION, WebhookRequest, WebhookResponse
from alpo.exceptions import SendFailedError
from alpo.utils.logger import LoggerManager

DEFAULT_TIMEOUT = 15.0


class WebhookGateway:
    """Thin async client for the agent webhook.

    Attributes:
        url: Webhook endpoint
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the gateway.

        Args:
            url: Webhook endpoint
            timeout: Per-request timeout in seconds
            client: Optional shared AsyncClient (created lazily when omitted)
        """
        self.url = url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self.logger = LoggerManager.get_logger(__name__)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send(self, request: WebhookRequest) -> WebhookResponse:
        """Deliver one message to the agent.

        Args:
            request: Message text and optional session token

        Returns:
            WebhookResponse with the agent reply and the session token to keep

        Raises:
            SendFailedError: On network failure, timeout, non-2xx status or
                a body that does not match the wire contract
        """
        has_session = request.session_id is not None
        try:
            response = await self.client.post(
                self.url,
                json=request.to_wire(),
                headers={
                    "Content-Type": "application/json",
                    "X-Contract-Version": WEBHOOK_CONTRACT_VERSION,
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            self.logger.warning(
                "gateway.timeout",
                extra={"extra_data": {"timeout": self.timeout, "has_session": has_session}},
            )
            raise SendFailedError.from_network_error(e) from e
        except httpx.HTTPError as e:
            self.logger.warning(
                "gateway.network_error",
                extra={"extra_data": {"error": str(e), "has_session": has_session}},
            )
            raise SendFailedError.from_network_error(e) from e

        if not response.is_success:
            self.logger.warning(
                "gateway.http_error",
                extra={"extra_data": {"status": response.status_code}},
            )
            raise SendFailedError.from_http_status(response.status_code)

        try:
            reply = WebhookResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            self.logger.warning(
                "gateway.invalid_response",
                extra={"extra_data": {"error": str(e)}},
            )
            raise SendFailedError.from_invalid_response(e) from e

        self.logger.info(
            "gateway.ok",
            extra={
                "extra_data": {
                    "status": response.status_code,
                    "new_session": not has_session,
                }
            },
        )
        return reply

    async def aclose(self) -> None:
        """Close the underlying client if the gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
