"""Tests for async utility functions."""

from __future__ import annotations

import httpx
import pytest

from dm_reply_agent.utils.async_helpers import (
    AgentError,
    ClassifierError,
    DeliveryError,
    create_retry,
)


def fast_retry(**kwargs: object):  # type: ignore[no-untyped-def]
    return create_retry(min_wait=0.01, max_wait=0.02, **kwargs)  # type: ignore[arg-type]


class TestCustomExceptions:
    """Test custom exception classes."""

    def test_agent_error_base(self) -> None:
        """Test AgentError is the base exception."""
        error = AgentError("base error")
        assert str(error) == "base error"
        assert isinstance(error, Exception)

    def test_classifier_error(self) -> None:
        """Test ClassifierError inherits from AgentError."""
        assert isinstance(ClassifierError("bad json"), AgentError)

    def test_delivery_error_with_status(self) -> None:
        """Test DeliveryError carries the HTTP status."""
        error = DeliveryError("Meta Graph API error: 400 {}", status_code=400)
        assert isinstance(error, AgentError)
        assert str(error) == "Meta Graph API error: 400 {}"
        assert error.status_code == 400

    def test_delivery_error_without_status(self) -> None:
        """Test DeliveryError defaults status_code to None."""
        assert DeliveryError("connection reset").status_code is None


class TestRetryDecorator:
    """Test retry decorator functionality."""

    @pytest.mark.asyncio
    async def test_succeeds_first_try(self) -> None:
        """Test that successful calls don't trigger retry."""
        call_count = 0

        @fast_retry()
        async def successful_call() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_call() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retries_on_timeout(self) -> None:
        """Test retry on httpx.TimeoutException by default."""
        call_count = 0

        @fast_retry()
        async def flaky_call() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise httpx.TimeoutException("timeout")
            return "success"

        assert await flaky_call() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        """Test that the last error is re-raised after max attempts."""
        call_count = 0

        @fast_retry(max_attempts=2)
        async def always_fails() -> str:
            nonlocal call_count
            call_count += 1
            raise httpx.NetworkError("down")

        with pytest.raises(httpx.NetworkError):
            await always_fails()
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_other_exceptions(self) -> None:
        """Test that non-retryable exceptions are not retried."""
        call_count = 0

        @fast_retry()
        async def raises_value_error() -> str:
            nonlocal call_count
            call_count += 1
            raise ValueError("not retryable")

        with pytest.raises(ValueError):
            await raises_value_error()

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_custom_exception_types(self) -> None:
        """Test retrying on a custom set of exception types."""
        call_count = 0

        @fast_retry(max_attempts=2, retry_on=(ClassifierError,))
        async def custom_flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise ClassifierError("retry me")
            return "success"

        assert await custom_flaky() == "success"
        assert call_count == 2
