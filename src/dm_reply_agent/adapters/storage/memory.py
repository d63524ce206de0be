"""Dict-backed store for development and tests."""

from __future__ import annotations

import dataclasses
import itertools
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from ...interfaces.store import DuplicateMessageError, MessageNotFoundError
from ...models.draft import Draft
from ...models.records import (
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


class InMemoryStore:
    """Store implementation holding every record in process memory.

    Uniqueness is enforced by keyed dicts, mirroring the unique
    constraints of the SQL backend. Contents are lost on exit.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)

        self.raw_events: dict[str, RawEvent] = {}
        self.threads: dict[str, Thread] = {}
        self.messages: dict[str, Message] = {}
        self._message_keys: dict[tuple[Direction, str], str] = {}
        self.contacts: dict[str, Contact] = {}
        self.policies: dict[Segment, ReplyPolicy] = {}
        self.delivery_logs: list[DeliveryLog] = []

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    async def upsert_raw_event(
        self,
        message_id: str,
        payload: dict[str, Any],
        received_at: datetime,
    ) -> RawEvent:
        existing = self.raw_events.get(message_id)
        if existing is not None:
            return existing
        event = RawEvent(message_id=message_id, payload=payload, received_at=received_at)
        self.raw_events[message_id] = event
        return event

    async def get_inbound_message(self, platform_message_id: str) -> Message | None:
        message_id = self._message_keys.get((Direction.IN, platform_message_id))
        return self.messages.get(message_id) if message_id else None

    async def get_message(self, message_id: str) -> Message | None:
        return self.messages.get(message_id)

    async def upsert_thread(self, thread_key: str) -> Thread:
        existing = self.threads.get(thread_key)
        if existing is not None:
            return existing
        thread = Thread(id=self._next_id("thr"), thread_key=thread_key, created_at=_now())
        self.threads[thread_key] = thread
        return thread

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
        key = (direction, platform_message_id)
        if key in self._message_keys:
            raise DuplicateMessageError(platform_message_id, direction)

        message = Message(
            id=self._next_id("msg"),
            platform_message_id=platform_message_id,
            thread_id=thread_id,
            sender_id=sender_id,
            direction=direction,
            text=text,
            received_at=received_at,
        )
        self.messages[message.id] = message
        self._message_keys[key] = message.id
        return message

    async def update_classification(self, message_id: str, draft: Draft) -> Message:
        message = self.messages.get(message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found")

        updated = dataclasses.replace(
            message,
            intent=draft.intent.value,
            confidence=draft.confidence,
            suggested_reply=draft.reply,
            needs_human_approval=draft.needs_human_approval,
        )
        self.messages[message_id] = updated
        return updated

    async def list_inbound_messages(self, limit: int = 20) -> list[Message]:
        inbound = [m for m in self.messages.values() if m.direction is Direction.IN]
        # Insertion order breaks ties between equal timestamps
        ordered = sorted(enumerate(inbound), key=lambda p: (p[1].received_at, p[0]), reverse=True)
        return [message for _, message in ordered[:limit]]

    async def upsert_contact(self, sender_id: str, default_segment: Segment) -> Contact:
        existing = self.contacts.get(sender_id)
        if existing is not None:
            return existing
        contact = Contact(sender_id=sender_id, segment=default_segment, updated_at=_now())
        self.contacts[sender_id] = contact
        return contact

    async def set_contact_segment(self, sender_id: str, segment: Segment) -> Contact:
        contact = Contact(sender_id=sender_id, segment=segment, updated_at=_now())
        self.contacts.pop(sender_id, None)
        self.contacts[sender_id] = contact
        return contact

    async def list_contacts(self, limit: int = 50) -> list[Contact]:
        # Dict order tracks last update since set_contact_segment re-inserts
        return list(reversed(self.contacts.values()))[:limit]

    async def upsert_policy(self, segment: Segment, defaults: PolicySettings) -> ReplyPolicy:
        existing = self.policies.get(segment)
        if existing is not None:
            return existing
        return await self.update_policy(segment, defaults)

    async def update_policy(self, segment: Segment, settings: PolicySettings) -> ReplyPolicy:
        policy = ReplyPolicy(
            segment=segment,
            auto_send=settings.auto_send,
            require_human_approval=settings.require_human_approval,
            template=settings.template,
        )
        self.policies[segment] = policy
        return policy

    async def create_delivery_log(
        self,
        message_id: str,
        status: DeliveryStatus,
        error: str | None = None,
        latency_ms: int | None = None,
    ) -> DeliveryLog:
        entry = DeliveryLog(
            id=self._next_id("log"),
            message_id=message_id,
            status=status,
            created_at=_now(),
            error=error,
            latency_ms=latency_ms,
        )
        self.delivery_logs.append(entry)
        return entry

    async def list_delivery_logs(
        self,
        message_ids: Sequence[str] | None = None,
    ) -> list[DeliveryLog]:
        if message_ids is None:
            return list(self.delivery_logs)
        wanted = set(message_ids)
        return [entry for entry in self.delivery_logs if entry.message_id in wanted]

    async def initialize(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None


def _now() -> datetime:
    return datetime.now(UTC)
