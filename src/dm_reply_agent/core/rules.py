"""Deterministic keyword rules for common inbound questions."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from dm_reply_agent.models.draft import Draft, Intent


@dataclass(frozen=True)
class KeywordRule:
    """Maps a keyword set to a fixed draft."""

    intent: Intent
    keywords: tuple[str, ...]
    confidence: float
    reply: str

    def matches(self, normalized_text: str) -> bool:
        """Return True if any keyword occurs in the lower-cased text."""
        return any(keyword in normalized_text for keyword in self.keywords)

    def to_draft(self) -> Draft:
        return Draft(
            intent=self.intent,
            confidence=self.confidence,
            reply=self.reply,
            needs_human_approval=False,
        )


# Checked in order, first match wins
DEFAULT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        intent=Intent.PRICING,
        keywords=("price", "how much", "cost"),
        confidence=0.95,
        reply=(
            "Thanks for reaching out. Our pricing depends on your needs. "
            "Share what you're looking for and I'll send the best option."
        ),
    ),
    KeywordRule(
        intent=Intent.REFUND,
        keywords=("refund", "return", "chargeback"),
        confidence=0.9,
        reply=(
            "I can help with refund support. Please share your order number "
            "and the issue, and we'll review it right away."
        ),
    ),
    KeywordRule(
        intent=Intent.SHIPPING,
        keywords=("shipping", "delivery", "tracking"),
        confidence=0.9,
        reply=(
            "Happy to help with shipping updates. Send your order number "
            "and I'll check status and ETA for you."
        ),
    ),
    KeywordRule(
        intent=Intent.ORDER_SUPPORT,
        keywords=("order", "purchase", "invoice"),
        confidence=0.88,
        reply=(
            "I can help with your order. Please share your order number "
            "and a short description of the issue."
        ),
    ),
)


class KeywordRules:
    """Keyword matcher producing fixed drafts.

    Example:
        rules = KeywordRules()
        draft = rules.generate_draft("How much is shipping?")  # pricing
    """

    def __init__(self, rules: Sequence[KeywordRule] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[KeywordRule, ...]:
        return self._rules

    def generate_draft(self, text: str) -> Draft | None:
        """Return the draft of the first matching rule, or None."""
        normalized = text.lower()
        for rule in self._rules:
            if rule.matches(normalized):
                return rule.to_draft()
        return None
