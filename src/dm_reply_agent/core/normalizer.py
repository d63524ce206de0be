"""Webhook payload normalization.

A single delivery may bundle several entries, each with several messaging
events. Every event carrying both a message id and a sender id becomes one
Job; everything else (read receipts, reactions, malformed events) is dropped
without error.
"""

from __future__ import annotations

import math
import time
from datetime import UTC, datetime
from typing import Any

import structlog

from dm_reply_agent.models.job import Job

log = structlog.get_logger()

UNKNOWN_ENTRY_ID = "unknown_thread"


def extract_jobs(payload: Any, now_ms: int | None = None) -> list[Job]:
    """Flatten a webhook payload into jobs.

    Args:
        payload: Decoded JSON body of the delivery
        now_ms: Ingestion time in epoch milliseconds (defaults to now)

    Returns:
        Jobs in payload order, possibly empty
    """
    if not isinstance(payload, dict):
        return []

    entries = payload.get("entry")
    if not isinstance(entries, list):
        return []

    ingested_at = now_ms if now_ms is not None else int(time.time() * 1000)
    jobs: list[Job] = []
    dropped = 0

    for entry in entries:
        if not isinstance(entry, dict):
            continue

        entry_id = _as_str(entry.get("id")) or UNKNOWN_ENTRY_ID
        events = entry.get("messaging")
        if not isinstance(events, list):
            continue

        for event in events:
            job = event_to_job(entry_id, event, payload, ingested_at)
            if job is None:
                dropped += 1
            else:
                jobs.append(job)

    if dropped:
        log.debug("webhook_events_dropped", count=dropped)

    return jobs


def event_to_job(
    entry_id: str,
    event: Any,
    payload: dict[str, Any],
    ingested_at: int,
) -> Job | None:
    """Convert one messaging event into a Job.

    Args:
        entry_id: Id of the enclosing entry
        event: Messaging event object
        payload: Full delivery payload
        ingested_at: Fallback timestamp in epoch milliseconds

    Returns:
        Job, or None when the event lacks a message id or sender id
    """
    if not isinstance(event, dict):
        return None

    message = _as_dict(event.get("message"))
    sender = _as_dict(event.get("sender"))
    recipient = _as_dict(event.get("recipient"))
    conversation = _as_dict(event.get("conversation"))

    message_id = _as_str(message.get("mid"))
    sender_id = _as_str(sender.get("id"))
    if not message_id or not sender_id:
        return None

    recipient_id = _as_str(recipient.get("id"))
    thread_id = _as_str(conversation.get("id")) or f"{entry_id}_{sender_id}"
    text = message.get("text")

    return Job(
        message_id=message_id,
        sender_id=sender_id,
        thread_id=thread_id,
        text=text if isinstance(text, str) else "",
        timestamp=_parse_timestamp(event.get("timestamp"), ingested_at),
        is_from_self_or_system=bool(message.get("is_echo")) or sender_id == recipient_id,
        raw_payload=payload,
    )


def _parse_timestamp(value: Any, fallback: int) -> int:
    # bool is an int subclass but never a timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value) or value < 0:
        return fallback
    try:
        datetime.fromtimestamp(value / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        # Beyond what a datetime can represent
        return fallback
    return int(value)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None
