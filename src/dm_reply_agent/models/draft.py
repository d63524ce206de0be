"""Data models for classification drafts."""

from dataclasses import dataclass
from enum import Enum


class Intent(Enum):
    """Closed set of intents a draft may carry."""

    GENERAL_QUESTION = "general_question"
    PRICING = "pricing"
    ORDER_SUPPORT = "order_support"
    SHIPPING = "shipping"
    REFUND = "refund"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Draft:
    """A candidate reply produced by rules or the model classifier."""

    intent: Intent
    confidence: float  # 0.0 to 1.0
    reply: str
    needs_human_approval: bool

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")


FALLBACK_REPLY = "Thanks for your message. A team member will review this shortly."

# Used whenever the classifier fails; always trips the approval guardrail
FALLBACK_DRAFT = Draft(
    intent=Intent.UNKNOWN,
    confidence=0.0,
    reply=FALLBACK_REPLY,
    needs_human_approval=True,
)
