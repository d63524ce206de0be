"""Per-job processing state machine.

Each job walks a fixed sequence of guards and ends in exactly one
ProcessingResult. Every terminal state except DUPLICATE writes one
DeliveryLog row against the stored inbound message:

1. Store the raw payload (create-if-absent)
2. Stop if the inbound message was already stored
3. Resolve the thread and insert the inbound message
4. Skip empty text
5. Skip self/system messages
6. Classify and record the draft
7. Skip low-confidence drafts and drafts that need approval
8. Skip when the sender's segment policy forbids auto-send
9. Send the reply and record the outbound message
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from dm_reply_agent.interfaces.store import DuplicateMessageError, MessageNotFoundError
from dm_reply_agent.models.records import DeliveryStatus, Direction, Message
from dm_reply_agent.models.result import ProcessingResult
from dm_reply_agent.utils.async_helpers import DeliveryError
from dm_reply_agent.utils.logging import log_context
from dm_reply_agent.utils.metrics import Timer, get_metrics
from dm_reply_agent.utils.security import sanitize_for_logging

if TYPE_CHECKING:
    from dm_reply_agent.core.classification import ClassificationPipeline
    from dm_reply_agent.core.policy import PolicyEngine
    from dm_reply_agent.interfaces.delivery import DeliveryClient, SendResult
    from dm_reply_agent.interfaces.store import Store
    from dm_reply_agent.models.job import Job

log = structlog.get_logger()

DEFAULT_CONFIDENCE_THRESHOLD = 0.6

SKIP_EMPTY = "empty message text"
SKIP_SELF = "self/system message"
SKIP_LOW_CONFIDENCE = "low confidence or human approval required"


class MessageProcessor:
    """Drives one inbound job from raw payload to a delivery log entry.

    Processing is idempotent per platform message id: a redelivered job
    stops at the dedupe step without further writes. There is no rollback;
    an unexpected exception leaves the writes made so far and propagates to
    the caller.

    Example:
        processor = MessageProcessor(store, pipeline, policies, delivery, "17841")
        result = await processor.handle(job)
    """

    def __init__(
        self,
        store: Store,
        pipeline: ClassificationPipeline,
        policies: PolicyEngine,
        delivery: DeliveryClient,
        account_id: str,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> None:
        """Initialize the processor.

        Args:
            store: Persistence backend
            pipeline: Draft generator
            policies: Segment and policy resolver
            delivery: Outbound messaging client
            account_id: Business account id recorded as sender of replies
            confidence_threshold: Minimum draft confidence for auto-send
        """
        self._store = store
        self._pipeline = pipeline
        self._policies = policies
        self._delivery = delivery
        self._account_id = account_id
        self._confidence_threshold = confidence_threshold

    async def handle(self, job: Job) -> ProcessingResult:
        """Process one job to a terminal state.

        Args:
            job: Normalized inbound event

        Returns:
            The terminal ProcessingResult
        """
        metrics = get_metrics()
        with log_context(message_id=job.message_id), Timer(metrics.processing_duration) as timer:
            result = await self._process(job)

        metrics.jobs_processed.inc(labels={"result": result.value})
        log.info(
            "job_processed",
            message_id=job.message_id,
            result=result.value,
            duration_ms=int(timer.elapsed * 1000),
        )
        return result

    async def _process(self, job: Job) -> ProcessingResult:
        received_at = job.received_at

        await self._store.upsert_raw_event(job.message_id, job.raw_payload, received_at)

        if await self._store.get_inbound_message(job.message_id) is not None:
            log.info("duplicate_message_skipped", message_id=job.message_id)
            return ProcessingResult.DUPLICATE

        thread = await self._store.upsert_thread(job.thread_id)

        try:
            inbound = await self._store.create_message(
                platform_message_id=job.message_id,
                thread_id=thread.id,
                sender_id=job.sender_id,
                direction=Direction.IN,
                text=job.text,
                received_at=received_at,
            )
        except DuplicateMessageError:
            # A concurrent delivery of the same message won the insert
            log.info("duplicate_message_race", message_id=job.message_id)
            return ProcessingResult.DUPLICATE

        if not job.text.strip():
            await self._skip(inbound, SKIP_EMPTY)
            return ProcessingResult.SKIPPED_EMPTY

        if job.is_from_self_or_system:
            await self._skip(inbound, SKIP_SELF)
            return ProcessingResult.SKIPPED_SELF

        log.debug("classifying_message", text=sanitize_for_logging(job.text))
        draft = await self._pipeline.classify(job.text)
        await self._store.update_classification(inbound.id, draft)

        log.info(
            "draft_generated",
            intent=draft.intent.value,
            confidence=draft.confidence,
            needs_human_approval=draft.needs_human_approval,
        )

        if draft.confidence < self._confidence_threshold or draft.needs_human_approval:
            await self._skip(inbound, SKIP_LOW_CONFIDENCE)
            return ProcessingResult.SKIPPED_LOW_CONFIDENCE

        segment = await self._policies.resolve_segment(job.sender_id)
        policy = await self._policies.resolve_policy(segment)

        if not policy.auto_send:
            await self._skip(inbound, f"auto-send disabled for segment {segment.value}")
            return ProcessingResult.SKIPPED_POLICY

        reply = draft.reply
        start = time.perf_counter()
        try:
            sent = await self._send(job.sender_id, reply, mode="auto")
        except Exception as e:
            await self._store.create_delivery_log(
                inbound.id,
                DeliveryStatus.ERROR,
                error=str(e),
                latency_ms=_elapsed_ms(start),
            )
            log.warning("auto_send_failed", error=str(e), error_type=type(e).__name__)
            return ProcessingResult.SEND_FAILED

        await self._record_outbound(inbound, sent, reply, DeliveryStatus.SENT)
        return ProcessingResult.SENT

    async def send_manual(self, message_id: str, text: str) -> Message:
        """Send an operator-written reply to a stored inbound message.

        Args:
            message_id: Stored id of the inbound message
            text: Reply body

        Returns:
            The stored outbound message

        Raises:
            MessageNotFoundError: If no inbound message has that id
            DeliveryError: If the send fails; other errors are wrapped
        """
        inbound = await self._store.get_message(message_id)
        if inbound is None or inbound.direction is not Direction.IN:
            raise MessageNotFoundError(f"Inbound message {message_id} not found")

        start = time.perf_counter()
        try:
            sent = await self._send(inbound.sender_id, text, mode="manual")
        except Exception as e:
            await self._store.create_delivery_log(
                inbound.id,
                DeliveryStatus.ERROR_MANUAL,
                error=str(e),
                latency_ms=_elapsed_ms(start),
            )
            log.warning("manual_send_failed", message_id=message_id, error=str(e))
            if isinstance(e, DeliveryError):
                raise
            raise DeliveryError(str(e)) from e

        outbound = await self._record_outbound(inbound, sent, text, DeliveryStatus.SENT_MANUAL)
        log.info("manual_reply_sent", message_id=message_id)
        return outbound

    async def _send(self, recipient_id: str, text: str, mode: str) -> SendResult:
        metrics = get_metrics()
        with Timer(metrics.send_duration):
            try:
                result = await self._delivery.send_message(recipient_id, text)
            except Exception:
                metrics.send_errors.inc(labels={"mode": mode})
                raise

        metrics.messages_sent.inc(labels={"mode": mode})
        return result

    async def _record_outbound(
        self,
        inbound: Message,
        sent: SendResult,
        text: str,
        status: DeliveryStatus,
    ) -> Message:
        outbound = await self._store.create_message(
            platform_message_id=sent.message_id,
            thread_id=inbound.thread_id,
            sender_id=self._account_id,
            direction=Direction.OUT,
            text=text,
            received_at=datetime.now(UTC),
        )
        await self._store.create_delivery_log(
            inbound.id,
            status,
            latency_ms=sent.latency_ms,
        )
        log.info(
            "reply_sent",
            status=status.value,
            outbound_id=sent.message_id,
            latency_ms=sent.latency_ms,
        )
        return outbound

    async def _skip(self, inbound: Message, reason: str) -> None:
        await self._store.create_delivery_log(inbound.id, DeliveryStatus.SKIPPED, error=reason)
        log.info("reply_skipped", reason=reason)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
