"""Outcome of processing one inbound job."""

from enum import Enum


class ProcessingResult(Enum):
    """Terminal state reached by the processing state machine."""

    DUPLICATE = "duplicate"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_SELF = "skipped_self"
    SKIPPED_LOW_CONFIDENCE = "skipped_low_confidence"
    SKIPPED_POLICY = "skipped_policy"
    SENT = "sent"
    SEND_FAILED = "send_failed"
