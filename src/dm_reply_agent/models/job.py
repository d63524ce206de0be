"""Data models for inbound webhook jobs."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class Job:
    """One inbound messaging event extracted from a webhook delivery.

    A Job lives only in memory: it is owned by the job queue until a single
    worker consumes it.
    """

    message_id: str  # Platform message id, the idempotency key
    sender_id: str
    thread_id: str
    text: str
    timestamp: int  # Epoch milliseconds
    is_from_self_or_system: bool = False

    # Full delivery payload, retained for raw-event storage
    raw_payload: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def received_at(self) -> datetime:
        """Platform timestamp as an aware datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=UTC)
