"""Segment and reply policy resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING, assert_never

import structlog

from dm_reply_agent.models.records import Contact, PolicySettings, ReplyPolicy, Segment

if TYPE_CHECKING:
    from dm_reply_agent.interfaces.store import Store

log = structlog.get_logger()

DEFAULT_SEGMENT = Segment.STRANGER


def default_policy(segment: Segment) -> PolicySettings:
    """Return the built-in policy for a segment.

    Friends and VIPs always go to a human; everyone else may be answered
    automatically.
    """
    match segment:
        case Segment.FRIEND | Segment.VIP:
            return PolicySettings(auto_send=False, require_human_approval=True)
        case Segment.KNOWN | Segment.STRANGER:
            return PolicySettings(auto_send=True, require_human_approval=False)
        case _:
            assert_never(segment)


def parse_segment(value: str) -> Segment:
    """Convert operator input into a Segment.

    Raises:
        ValueError: If the value names no segment
    """
    try:
        return Segment(value.strip().upper())
    except ValueError:
        allowed = ", ".join(s.value for s in Segment)
        raise ValueError(f"Unknown segment {value!r}, expected one of: {allowed}") from None


class PolicyEngine:
    """Resolves a sender's segment and the policy that applies to it.

    Both lookups are create-if-absent, so the first message from a sender
    creates a STRANGER contact and the first use of a segment materializes
    its default policy row.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    async def resolve_segment(self, sender_id: str) -> Segment:
        contact = await self._store.upsert_contact(sender_id, DEFAULT_SEGMENT)
        return contact.segment

    async def resolve_policy(self, segment: Segment) -> ReplyPolicy:
        return await self._store.upsert_policy(segment, default_policy(segment))

    async def ensure_all_policies(self) -> list[ReplyPolicy]:
        """Materialize and return the policy of every segment, in segment order."""
        return [await self.resolve_policy(segment) for segment in Segment]

    async def set_segment(self, sender_id: str, segment: Segment) -> Contact:
        """Assign a sender to a segment."""
        contact = await self._store.set_contact_segment(sender_id, segment)
        log.info("contact_segment_updated", sender_id=sender_id, segment=segment.value)
        return contact

    async def update_policy(self, segment: Segment, settings: PolicySettings) -> ReplyPolicy:
        """Overwrite the policy of a segment."""
        policy = await self._store.update_policy(segment, settings)
        log.info(
            "reply_policy_updated",
            segment=segment.value,
            auto_send=settings.auto_send,
            require_human_approval=settings.require_human_approval,
            has_template=settings.template is not None,
        )
        return policy
