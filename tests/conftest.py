"""Shared test fixtures for DM Reply Agent."""

from collections.abc import Callable, Iterator

import pytest

from dm_reply_agent.adapters.storage.memory import InMemoryStore
from dm_reply_agent.config.schema import AgentConfig, InstagramConfig, WebhookConfig
from dm_reply_agent.core.agent import Agent
from dm_reply_agent.core.classification import NullClassifier
from dm_reply_agent.interfaces.delivery import SendResult
from dm_reply_agent.models.job import Job
from dm_reply_agent.utils.metrics import MetricsRegistry

APP_SECRET = "test_app_secret"
VERIFY_TOKEN = "test_verify_token"
BUSINESS_ACCOUNT_ID = "17841400000000000"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    """Give every test a fresh metrics registry."""
    MetricsRegistry.reset()
    yield
    MetricsRegistry.reset()


@pytest.fixture
def agent_config() -> AgentConfig:
    """Create a test agent configuration."""
    return AgentConfig(
        webhook=WebhookConfig(app_secret=APP_SECRET, verify_token=VERIFY_TOKEN),
        instagram=InstagramConfig(
            access_token="EAAtesttoken",
            business_account_id=BUSINESS_ACCOUNT_ID,
        ),
    )


@pytest.fixture
def store() -> InMemoryStore:
    """Create an empty in-memory store."""
    return InMemoryStore()


class FakeDelivery:
    """Delivery client recording every send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.error: Exception | None = None
        self.closed = False
        self._counter = 0

    async def send_message(self, recipient_id: str, text: str) -> SendResult:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient_id, text))
        self._counter += 1
        return SendResult(message_id=f"out_{self._counter}", latency_ms=7)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def delivery() -> FakeDelivery:
    """Create a recording delivery client."""
    return FakeDelivery()


@pytest.fixture
def make_job() -> Callable[..., Job]:
    """Return a factory building jobs with sensible defaults."""

    def _make(
        message_id: str = "mid_1",
        text: str = "hello there",
        sender_id: str = "user_1",
        thread_id: str = "thread_1",
        is_from_self_or_system: bool = False,
    ) -> Job:
        return Job(
            message_id=message_id,
            sender_id=sender_id,
            thread_id=thread_id,
            text=text,
            timestamp=1_700_000_000_000,
            is_from_self_or_system=is_from_self_or_system,
            raw_payload={"object": "instagram"},
        )

    return _make


@pytest.fixture
def agent(agent_config: AgentConfig, store: InMemoryStore, delivery: FakeDelivery) -> Agent:
    """Create a rules-only agent over the in-memory store and fake delivery."""
    return Agent(agent_config, store, NullClassifier(), delivery)
