"""Data models and transfer objects."""

from .draft import FALLBACK_DRAFT, Draft, Intent
from .job import Job
from .records import (
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
from .result import ProcessingResult

__all__ = [
    # Job models
    "Job",
    # Draft models
    "Intent",
    "Draft",
    "FALLBACK_DRAFT",
    # Stored records
    "Direction",
    "Segment",
    "DeliveryStatus",
    "RawEvent",
    "Thread",
    "Message",
    "Contact",
    "PolicySettings",
    "ReplyPolicy",
    "DeliveryLog",
    # Processing outcome
    "ProcessingResult",
]
