"""Tests for the Instagram delivery client."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from dm_reply_agent.adapters.delivery.instagram import (
    InstagramDeliveryClient,
    fallback_message_id,
)
from dm_reply_agent.config.schema import InstagramConfig
from dm_reply_agent.utils.async_helpers import DeliveryError

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def instagram_config() -> InstagramConfig:
    """Create a test Instagram configuration."""
    return InstagramConfig(
        access_token="EAAtesttoken",
        business_account_id="17841400000000000",
        graph_api_version="v21.0",
        base_url="https://graph.example.com/",
    )


def _client(config: InstagramConfig, handler: Handler) -> InstagramDeliveryClient:
    return InstagramDeliveryClient(
        config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


class TestSendMessage:
    """Test successful sends."""

    def test_send_url(self, instagram_config: InstagramConfig) -> None:
        """Test the endpoint is built from base URL, version and account."""
        client = InstagramDeliveryClient(instagram_config)
        assert client.send_url == "https://graph.example.com/v21.0/17841400000000000/messages"

    @pytest.mark.asyncio
    async def test_request_shape(self, instagram_config: InstagramConfig) -> None:
        """Test method, headers and JSON body of the send."""
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"recipient_id": "user_1", "message_id": "m_out_1"})

        client = _client(instagram_config, handler)
        result = await client.send_message("user_1", "Thanks for reaching out!")

        assert result.message_id == "m_out_1"
        assert result.latency_ms >= 0

        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == client.send_url
        assert request.headers["Authorization"] == "Bearer EAAtesttoken"
        assert json.loads(request.content) == {
            "messaging_product": "instagram",
            "recipient": {"id": "user_1"},
            "message": {"text": "Thanks for reaching out!"},
        }
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"message_id": ""}, {"message_id": 42}])
    async def test_missing_message_id_uses_fallback(
        self, instagram_config: InstagramConfig, body: dict[str, object]
    ) -> None:
        """Test a success without a usable message_id gets a generated id."""
        client = _client(instagram_config, lambda _: httpx.Response(200, json=body))

        result = await client.send_message("user_1", "hi")

        assert result.message_id.startswith("out_")

    @pytest.mark.asyncio
    async def test_non_json_success(self, instagram_config: InstagramConfig) -> None:
        """Test a 2xx with a non-JSON body still counts as sent."""
        client = _client(instagram_config, lambda _: httpx.Response(200, text="OK"))

        result = await client.send_message("user_1", "hi")

        assert result.message_id.startswith("out_")


class TestSendFailures:
    """Test failures raise DeliveryError and are never retried."""

    @pytest.mark.asyncio
    async def test_error_status(self, instagram_config: InstagramConfig) -> None:
        """Test a non-2xx response raises with the status and body."""
        calls = 0
        error_body = {"error": {"message": "Invalid OAuth access token", "code": 190}}

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, json=error_body)

        client = _client(instagram_config, handler)

        with pytest.raises(DeliveryError) as exc_info:
            await client.send_message("user_1", "hi")

        assert exc_info.value.status_code == 400
        assert str(exc_info.value) == f"Meta Graph API error: 400 {json.dumps(error_body)}"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_error_status_without_body(self, instagram_config: InstagramConfig) -> None:
        """Test a non-JSON error body is reported as an empty object."""
        client = _client(instagram_config, lambda _: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(DeliveryError, match=r"Meta Graph API error: 502 \{\}"):
            await client.send_message("user_1", "hi")

    @pytest.mark.asyncio
    async def test_transport_error(self, instagram_config: InstagramConfig) -> None:
        """Test a connection failure raises DeliveryError without a status."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(instagram_config, handler)

        with pytest.raises(DeliveryError) as exc_info:
            await client.send_message("user_1", "hi")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout(self, instagram_config: InstagramConfig) -> None:
        """Test a timeout raises DeliveryError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(instagram_config, handler)

        with pytest.raises(DeliveryError, match="timed out"):
            await client.send_message("user_1", "hi")


class TestFallbackMessageId:
    """Test generated outbound ids."""

    def test_format(self) -> None:
        """Test ids look like out_<ms>_<hex>."""
        prefix, millis, suffix = fallback_message_id().split("_")
        assert prefix == "out"
        assert millis.isdigit()
        assert len(suffix) == 6
        int(suffix, 16)

    def test_unique(self) -> None:
        """Test consecutive ids differ."""
        assert fallback_message_id() != fallback_message_id()
