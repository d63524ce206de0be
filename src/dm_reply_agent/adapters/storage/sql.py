"""SQLAlchemy-backed store.

Uses the async ORM, so any async driver works (aiosqlite by default,
asyncpg for PostgreSQL). Uniqueness is enforced by database constraints:

- raw_events.message_id
- threads.thread_key
- messages(direction, platform_message_id)
- contacts.sender_id
- reply_policies.segment
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ...interfaces.store import DuplicateMessageError, MessageNotFoundError, StoreError
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

log = structlog.get_logger()


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(UTC)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class RawEventRow(Base):
    __tablename__ = "raw_events"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    message_id: Mapped[str] = mapped_column(String(255), unique=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def to_record(self) -> RawEvent:
        return RawEvent(
            message_id=self.message_id,
            payload=self.payload,
            received_at=_aware(self.received_at),
        )


class ThreadRow(Base):
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    thread_key: Mapped[str] = mapped_column(String(255), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    def to_record(self) -> Thread:
        return Thread(id=self.id, thread_key=self.thread_key, created_at=_aware(self.created_at))


class MessageRow(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("direction", "platform_message_id", name="uq_messages_direction_mid"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    platform_message_id: Mapped[str] = mapped_column(String(255))
    thread_id: Mapped[str] = mapped_column(ForeignKey("threads.id"), index=True)
    sender_id: Mapped[str] = mapped_column(String(255))
    direction: Mapped[str] = mapped_column(String(8))
    text: Mapped[str] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    intent: Mapped[str | None] = mapped_column(String(32), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    suggested_reply: Mapped[str | None] = mapped_column(Text, nullable=True)
    needs_human_approval: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_record(self) -> Message:
        return Message(
            id=self.id,
            platform_message_id=self.platform_message_id,
            thread_id=self.thread_id,
            sender_id=self.sender_id,
            direction=Direction(self.direction),
            text=self.text,
            received_at=_aware(self.received_at),
            intent=self.intent,
            confidence=self.confidence,
            suggested_reply=self.suggested_reply,
            needs_human_approval=self.needs_human_approval,
        )


class ContactRow(Base):
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    sender_id: Mapped[str] = mapped_column(String(255), unique=True)
    segment: Mapped[str] = mapped_column(String(16))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    def to_record(self) -> Contact:
        return Contact(
            sender_id=self.sender_id,
            segment=Segment(self.segment),
            updated_at=_aware(self.updated_at),
        )


class ReplyPolicyRow(Base):
    __tablename__ = "reply_policies"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    segment: Mapped[str] = mapped_column(String(16), unique=True)
    auto_send: Mapped[bool] = mapped_column(Boolean)
    require_human_approval: Mapped[bool] = mapped_column(Boolean)
    template: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_record(self) -> ReplyPolicy:
        return ReplyPolicy(
            segment=Segment(self.segment),
            auto_send=self.auto_send,
            require_human_approval=self.require_human_approval,
            template=self.template,
        )


class DeliveryLogRow(Base):
    __tablename__ = "delivery_logs"

    # Autoincrement keeps insertion order queryable
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True, default=_new_id)
    message_id: Mapped[str] = mapped_column(ForeignKey("messages.id"), index=True)
    status: Mapped[str] = mapped_column(String(16))
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    def to_record(self) -> DeliveryLog:
        return DeliveryLog(
            id=self.id,
            message_id=self.message_id,
            status=DeliveryStatus(self.status),
            created_at=_aware(self.created_at),
            error=self.error,
            latency_ms=self.latency_ms,
        )


class SqlAlchemyStore:
    """Store implementation on an async SQLAlchemy engine.

    Each method runs in its own session and commits before returning.

    Example:
        store = SqlAlchemyStore("sqlite+aiosqlite:///./agent.db")
        await store.initialize()
        thread = await store.upsert_thread("t_1")
    """

    def __init__(self, url: str, echo: bool = False, engine: AsyncEngine | None = None) -> None:
        """Initialize the store.

        Args:
            url: SQLAlchemy async database URL
            echo: Log every SQL statement
            engine: Preconfigured engine. If None, creates one from url.
        """
        self._engine = engine or create_async_engine(url, echo=echo)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    async def initialize(self) -> None:
        """Create missing tables."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        log.info("sql_store_initialized", dialect=self._engine.dialect.name)

    async def upsert_raw_event(
        self,
        message_id: str,
        payload: dict[str, Any],
        received_at: datetime,
    ) -> RawEvent:
        row = await self._get_or_create(
            select(RawEventRow).where(RawEventRow.message_id == message_id),
            lambda: RawEventRow(message_id=message_id, payload=payload, received_at=received_at),
        )
        return row.to_record()

    async def get_inbound_message(self, platform_message_id: str) -> Message | None:
        async with self._sessions() as session:
            row = await session.scalar(
                select(MessageRow).where(
                    MessageRow.direction == Direction.IN.value,
                    MessageRow.platform_message_id == platform_message_id,
                )
            )
            return row.to_record() if row else None

    async def get_message(self, message_id: str) -> Message | None:
        async with self._sessions() as session:
            row = await session.get(MessageRow, message_id)
            return row.to_record() if row else None

    async def upsert_thread(self, thread_key: str) -> Thread:
        row = await self._get_or_create(
            select(ThreadRow).where(ThreadRow.thread_key == thread_key),
            lambda: ThreadRow(thread_key=thread_key),
        )
        return row.to_record()

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
        row = MessageRow(
            platform_message_id=platform_message_id,
            thread_id=thread_id,
            sender_id=sender_id,
            direction=direction.value,
            text=text,
            received_at=received_at,
        )
        async with self._sessions() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateMessageError(platform_message_id, direction) from e
        return row.to_record()

    async def update_classification(self, message_id: str, draft: Draft) -> Message:
        async with self._sessions() as session:
            row = await session.get(MessageRow, message_id)
            if row is None:
                raise MessageNotFoundError(f"Message {message_id} not found")

            row.intent = draft.intent.value
            row.confidence = draft.confidence
            row.suggested_reply = draft.reply
            row.needs_human_approval = draft.needs_human_approval
            await session.commit()
            return row.to_record()

    async def list_inbound_messages(self, limit: int = 20) -> list[Message]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(MessageRow)
                .where(MessageRow.direction == Direction.IN.value)
                .order_by(MessageRow.received_at.desc())
                .limit(limit)
            )
            return [row.to_record() for row in rows]

    async def upsert_contact(self, sender_id: str, default_segment: Segment) -> Contact:
        row = await self._get_or_create(
            select(ContactRow).where(ContactRow.sender_id == sender_id),
            lambda: ContactRow(sender_id=sender_id, segment=default_segment.value),
        )
        return row.to_record()

    async def set_contact_segment(self, sender_id: str, segment: Segment) -> Contact:
        await self.upsert_contact(sender_id, segment)
        async with self._sessions() as session:
            row = await session.scalar(select(ContactRow).where(ContactRow.sender_id == sender_id))
            if row is None:
                raise StoreError(f"Contact {sender_id} vanished during update")
            row.segment = segment.value
            row.updated_at = _now()
            await session.commit()
            return row.to_record()

    async def list_contacts(self, limit: int = 50) -> list[Contact]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(ContactRow).order_by(ContactRow.updated_at.desc()).limit(limit)
            )
            return [row.to_record() for row in rows]

    async def upsert_policy(self, segment: Segment, defaults: PolicySettings) -> ReplyPolicy:
        row = await self._get_or_create(
            select(ReplyPolicyRow).where(ReplyPolicyRow.segment == segment.value),
            lambda: ReplyPolicyRow(
                segment=segment.value,
                auto_send=defaults.auto_send,
                require_human_approval=defaults.require_human_approval,
                template=defaults.template,
            ),
        )
        return row.to_record()

    async def update_policy(self, segment: Segment, settings: PolicySettings) -> ReplyPolicy:
        await self.upsert_policy(segment, settings)
        async with self._sessions() as session:
            row = await session.scalar(
                select(ReplyPolicyRow).where(ReplyPolicyRow.segment == segment.value)
            )
            if row is None:
                raise StoreError(f"Policy {segment.value} vanished during update")
            row.auto_send = settings.auto_send
            row.require_human_approval = settings.require_human_approval
            row.template = settings.template
            await session.commit()
            return row.to_record()

    async def create_delivery_log(
        self,
        message_id: str,
        status: DeliveryStatus,
        error: str | None = None,
        latency_ms: int | None = None,
    ) -> DeliveryLog:
        row = DeliveryLogRow(
            message_id=message_id,
            status=status.value,
            error=error,
            latency_ms=latency_ms,
        )
        async with self._sessions() as session:
            session.add(row)
            await session.commit()
        return row.to_record()

    async def list_delivery_logs(
        self,
        message_ids: Sequence[str] | None = None,
    ) -> list[DeliveryLog]:
        query = select(DeliveryLogRow).order_by(DeliveryLogRow.seq)
        if message_ids is not None:
            query = query.where(DeliveryLogRow.message_id.in_(list(message_ids)))
        async with self._sessions() as session:
            rows = await session.scalars(query)
            return [row.to_record() for row in rows]

    async def ping(self) -> None:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(select(1))
        except SQLAlchemyError as e:
            raise StoreError(f"Database unreachable: {e}") from e

    async def close(self) -> None:
        await self._engine.dispose()

    async def _get_or_create(self, query: Any, factory: Any) -> Any:
        """Return the row matched by query, inserting factory() if absent.

        A concurrent insert of the same key surfaces as IntegrityError; the
        winner's row is then read back.
        """
        async with self._sessions() as session:
            row = await session.scalar(query)
            if row is not None:
                return row

            row = factory()
            session.add(row)
            try:
                await session.commit()
                return row
            except IntegrityError:
                await session.rollback()

        async with self._sessions() as session:
            row = await session.scalar(query)
            if row is None:
                raise StoreError("Row missing after unique constraint conflict")
            return row
