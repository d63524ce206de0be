"""Persistent records stored by the agent."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Direction(Enum):
    """Direction of a stored message."""

    IN = "IN"
    OUT = "OUT"


class Segment(Enum):
    """Audience segment controlling automation policy."""

    FRIEND = "FRIEND"
    KNOWN = "KNOWN"
    STRANGER = "STRANGER"
    VIP = "VIP"


class DeliveryStatus(Enum):
    """Terminal outcome recorded for an inbound message."""

    SENT = "SENT"
    SKIPPED = "SKIPPED"
    ERROR = "ERROR"
    SENT_MANUAL = "SENT_MANUAL"
    ERROR_MANUAL = "ERROR_MANUAL"


@dataclass(frozen=True)
class RawEvent:
    """Raw webhook payload stored once per platform message id."""

    message_id: str
    payload: dict[str, Any]
    received_at: datetime


@dataclass(frozen=True)
class Thread:
    """A conversation thread."""

    id: str
    thread_key: str
    created_at: datetime


@dataclass(frozen=True)
class Message:
    """One inbound or outbound message unit."""

    id: str
    platform_message_id: str
    thread_id: str
    sender_id: str
    direction: Direction
    text: str
    received_at: datetime

    # Populated once by classification, inbound only
    intent: str | None = None
    confidence: float | None = None
    suggested_reply: str | None = None
    needs_human_approval: bool = False


@dataclass(frozen=True)
class Contact:
    """Maps a sender to an audience segment."""

    sender_id: str
    segment: Segment
    updated_at: datetime


@dataclass(frozen=True)
class PolicySettings:
    """Automation permissions for a segment."""

    auto_send: bool
    require_human_approval: bool
    template: str | None = None


@dataclass(frozen=True)
class ReplyPolicy:
    """Stored policy row, one per segment."""

    segment: Segment
    auto_send: bool
    require_human_approval: bool
    template: str | None = None

    @property
    def settings(self) -> PolicySettings:
        return PolicySettings(
            auto_send=self.auto_send,
            require_human_approval=self.require_human_approval,
            template=self.template,
        )


@dataclass(frozen=True)
class DeliveryLog:
    """Append-only record of one terminal outcome."""

    id: str
    message_id: str  # Stored inbound Message id
    status: DeliveryStatus
    created_at: datetime
    error: str | None = None
    latency_ms: int | None = None
