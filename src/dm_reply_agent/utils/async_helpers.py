"""Exception hierarchy and retry policy shared by the adapters.

Only idempotent calls get a retry (the model classifier). Outbound sends
never do: a send that timed out may still have reached the customer.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")

TRANSIENT_HTTP_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
)


class AgentError(Exception):
    """Base exception for all agent errors."""


class ClassifierError(AgentError):
    """The model classifier returned nothing usable."""


class DeliveryError(AgentError):
    """The platform did not accept an outbound message.

    Attributes:
        status_code: HTTP status from the platform, None for transport errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    if error is None:
        return
    log.warning(
        "retrying_call",
        function=getattr(retry_state.fn, "__qualname__", None),
        attempt=retry_state.attempt_number,
        error_type=type(error).__name__,
        error=str(error),
        wait_s=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def create_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_HTTP_ERRORS,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Build a tenacity decorator with exponential backoff.

    The last exception is re-raised once ``max_attempts`` is reached, and
    exceptions outside ``retry_on`` propagate immediately.

    Example:
        @create_retry(max_attempts=3, retry_on=(anthropic.RateLimitError,))
        async def call_model(...): ...
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )
