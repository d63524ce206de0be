"""Instagram Graph API delivery client.

Sends are attempted exactly once; a failure is reported, never retried.
"""

from __future__ import annotations

import json
import secrets
import time
from typing import Any

import httpx
import structlog

from ...config.schema import InstagramConfig
from ...interfaces.delivery import SendResult
from ...utils.async_helpers import DeliveryError
from ...utils.security import sanitize_for_logging

log = structlog.get_logger()


def fallback_message_id() -> str:
    """Build an outbound id for responses that omit ``message_id``."""
    return f"out_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class InstagramDeliveryClient:
    """Delivery client implementing the DeliveryClient protocol.

    Example:
        config = InstagramConfig(access_token="EAA...", business_account_id="17841")
        client = InstagramDeliveryClient(config)

        result = await client.send_message("1789", "Thanks for reaching out!")
        print(result.message_id, result.latency_ms)
    """

    def __init__(
        self,
        config: InstagramConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Instagram-specific configuration.
            http_client: Preconfigured HTTP client. If None, creates one.
        """
        self._config = config
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    @property
    def send_url(self) -> str:
        """Return the Send API endpoint for the business account."""
        base = self._config.base_url.rstrip("/")
        return (
            f"{base}/{self._config.graph_api_version}/"
            f"{self._config.business_account_id}/messages"
        )

    async def send_message(self, recipient_id: str, text: str) -> SendResult:
        """Send a direct message.

        Raises:
            DeliveryError: On a non-2xx response or a transport failure.
        """
        payload = {
            "messaging_product": "instagram",
            "recipient": {"id": recipient_id},
            "message": {"text": text},
        }
        headers = {
            "Authorization": f"Bearer {self._config.access_token}",
            "Content-Type": "application/json",
        }

        start = time.perf_counter()
        try:
            response = await self._client.post(self.send_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            log.error("instagram_send_timeout", recipient_id=recipient_id, error=str(e))
            raise DeliveryError(f"Meta Graph API request timed out: {e}") from e
        except httpx.HTTPError as e:
            log.error("instagram_send_transport_error", recipient_id=recipient_id, error=str(e))
            raise DeliveryError(f"Meta Graph API request failed: {e}") from e

        latency_ms = int((time.perf_counter() - start) * 1000)
        body = _json_body(response)

        if not response.is_success:
            error_message = json.dumps(body)
            log.error(
                "instagram_send_failed",
                status_code=response.status_code,
                latency_ms=latency_ms,
                error=sanitize_for_logging(error_message),
            )
            raise DeliveryError(
                f"Meta Graph API error: {response.status_code} {error_message}",
                status_code=response.status_code,
            )

        message_id = body.get("message_id")
        if not isinstance(message_id, str) or not message_id:
            message_id = fallback_message_id()

        log.info("instagram_message_sent", recipient_id=recipient_id, latency_ms=latency_ms)
        return SendResult(message_id=message_id, latency_ms=latency_ms)

    async def close(self) -> None:
        await self._client.aclose()


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
