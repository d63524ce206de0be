"""Abstract persistence interface for the processing pipeline."""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from ..models.draft import Draft
from ..models.records import (
    Contact,
    DeliveryLog,
    DeliveryStatus,
    Direction,
    Message,
    PolicySettings,
    RawEvent,
    ReplyPolicy,
    Segment,
    Thread,
)
from ..utils.async_helpers import AgentError


class StoreError(AgentError):
    """Persistence operation failed."""


class DuplicateMessageError(StoreError):
    """A message with the same direction and platform id already exists.

    This is raised by the storage uniqueness constraint and is the
    authoritative duplicate-delivery signal.
    """

    def __init__(self, platform_message_id: str, direction: Direction) -> None:
        super().__init__(
            f"{direction.value} message {platform_message_id} already stored"
        )
        self.platform_message_id = platform_message_id
        self.direction = direction


class MessageNotFoundError(StoreError):
    """Requested message does not exist."""


class Store(Protocol):
    """Abstract interface for any transactional store.

    Upserts are create-if-absent: an existing row is returned unchanged.
    Every method commits independently; there is no cross-call transaction.
    """

    async def upsert_raw_event(
        self,
        message_id: str,
        payload: dict[str, Any],
        received_at: datetime,
    ) -> RawEvent:
        """Store the raw payload for a platform message id if absent."""
        ...

    async def get_inbound_message(self, platform_message_id: str) -> Message | None:
        """Find the inbound message for a platform message id."""
        ...

    async def get_message(self, message_id: str) -> Message | None:
        """Find a message by its stored id."""
        ...

    async def upsert_thread(self, thread_key: str) -> Thread:
        """Return the thread for a key, creating it if absent."""
        ...

    async def create_message(
        self,
        *,
        platform_message_id: str,
        thread_id: str,
        sender_id: str,
        direction: Direction,
        text: str,
        received_at: datetime,
    ) -> Message:
        """
        Insert a message.

        Raises:
            DuplicateMessageError: If (direction, platform_message_id) exists
        """
        ...

    async def update_classification(self, message_id: str, draft: Draft) -> Message:
        """
        Record classification output on an inbound message.

        Raises:
            MessageNotFoundError: If the message does not exist
        """
        ...

    async def list_inbound_messages(self, limit: int = 20) -> list[Message]:
        """Return the most recent inbound messages, newest first."""
        ...

    async def upsert_contact(self, sender_id: str, default_segment: Segment) -> Contact:
        """Return the contact for a sender, creating it with a default if absent."""
        ...

    async def set_contact_segment(self, sender_id: str, segment: Segment) -> Contact:
        """Create or overwrite the segment for a sender."""
        ...

    async def list_contacts(self, limit: int = 50) -> list[Contact]:
        """Return the most recently updated contacts."""
        ...

    async def upsert_policy(self, segment: Segment, defaults: PolicySettings) -> ReplyPolicy:
        """Return the policy for a segment, creating it from defaults if absent."""
        ...

    async def update_policy(self, segment: Segment, settings: PolicySettings) -> ReplyPolicy:
        """Create or overwrite the policy for a segment."""
        ...

    async def create_delivery_log(
        self,
        message_id: str,
        status: DeliveryStatus,
        error: str | None = None,
        latency_ms: int | None = None,
    ) -> DeliveryLog:
        """Append a delivery log entry."""
        ...

    async def list_delivery_logs(
        self,
        message_ids: Sequence[str] | None = None,
    ) -> list[DeliveryLog]:
        """Return delivery logs in insertion order, optionally filtered."""
        ...

    async def initialize(self) -> None:
        """Prepare the backend (create tables, open pools)."""
        ...

    async def ping(self) -> None:
        """Raise if the store is unreachable."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...
