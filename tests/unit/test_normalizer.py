"""Tests for webhook payload normalization."""

from typing import Any

import pytest

from dm_reply_agent.core.normalizer import UNKNOWN_ENTRY_ID, extract_jobs

NOW_MS = 1_700_000_999_000


def _payload(*events: Any, entry_id: Any = "entry_1") -> dict[str, Any]:
    entry: dict[str, Any] = {"messaging": list(events)}
    if entry_id is not None:
        entry["id"] = entry_id
    return {"object": "instagram", "entry": [entry]}


def _event(**overrides: Any) -> dict[str, Any]:
    event: dict[str, Any] = {
        "sender": {"id": "user_1"},
        "recipient": {"id": "biz_1"},
        "timestamp": 1_700_000_000_000,
        "message": {"mid": "mid_1", "text": "How much is shipping?"},
    }
    event.update(overrides)
    return event


class TestExtractJobs:
    """Tests for extract_jobs."""

    def test_extracts_fields(self) -> None:
        """Test a well-formed event becomes a job with every field set."""
        payload = _payload(_event(conversation={"id": "conv_9"}))

        jobs = extract_jobs(payload, now_ms=NOW_MS)

        assert len(jobs) == 1
        job = jobs[0]
        assert job.message_id == "mid_1"
        assert job.sender_id == "user_1"
        assert job.thread_id == "conv_9"
        assert job.text == "How much is shipping?"
        assert job.timestamp == 1_700_000_000_000
        assert job.is_from_self_or_system is False
        assert job.raw_payload is payload

    def test_thread_id_defaults_to_entry_and_sender(self) -> None:
        """Test the thread id is synthesized without a conversation id."""
        jobs = extract_jobs(_payload(_event(), entry_id="entry_7"), now_ms=NOW_MS)
        assert jobs[0].thread_id == "entry_7_user_1"

    def test_missing_entry_id_uses_placeholder(self) -> None:
        """Test entries without an id fall back to the placeholder."""
        jobs = extract_jobs(_payload(_event(), entry_id=None), now_ms=NOW_MS)
        assert jobs[0].thread_id == f"{UNKNOWN_ENTRY_ID}_user_1"

    def test_echo_is_marked_self(self) -> None:
        """Test echo messages are flagged as self/system."""
        event = _event(message={"mid": "mid_1", "text": "hi", "is_echo": True})
        jobs = extract_jobs(_payload(event), now_ms=NOW_MS)
        assert jobs[0].is_from_self_or_system is True

    def test_sender_equal_to_recipient_is_marked_self(self) -> None:
        """Test messages the account sent to itself are flagged."""
        event = _event(sender={"id": "biz_1"})
        jobs = extract_jobs(_payload(event), now_ms=NOW_MS)
        assert jobs[0].is_from_self_or_system is True

    def test_missing_text_becomes_empty_string(self) -> None:
        """Test attachments without text produce an empty text job."""
        event = _event(message={"mid": "mid_1", "attachments": [{"type": "image"}]})
        jobs = extract_jobs(_payload(event), now_ms=NOW_MS)
        assert jobs[0].text == ""

    @pytest.mark.parametrize(
        "timestamp",
        ["1700000000000", None, float("nan"), float("inf"), -5, True, 1e20, 10**25],
    )
    def test_invalid_timestamp_falls_back_to_now(self, timestamp: Any) -> None:
        """Test unusable timestamps are replaced by the ingestion time."""
        jobs = extract_jobs(_payload(_event(timestamp=timestamp)), now_ms=NOW_MS)
        assert jobs[0].timestamp == NOW_MS

    @pytest.mark.parametrize(
        "event",
        [
            {"sender": {"id": "user_1"}, "read": {"mid": "mid_1"}},
            {"message": {"mid": "mid_1", "text": "no sender"}},
            {"sender": {"id": "user_1"}, "message": {"text": "no mid"}},
            {"sender": "user_1", "message": {"mid": "mid_1"}},
            "not-an-object",
        ],
    )
    def test_events_without_ids_are_skipped(self, event: Any) -> None:
        """Test events lacking a message id or sender id are dropped."""
        assert extract_jobs(_payload(event), now_ms=NOW_MS) == []

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            "string",
            {},
            {"entry": "nope"},
            {"entry": ["nope", 3]},
            {"entry": [{"id": "e", "messaging": "nope"}]},
        ],
    )
    def test_malformed_payload_yields_no_jobs(self, payload: Any) -> None:
        """Test malformed shapes never raise."""
        assert extract_jobs(payload) == []

    def test_multiple_entries_and_events_keep_order(self) -> None:
        """Test every event across entries is extracted in payload order."""
        payload = {
            "entry": [
                {
                    "id": "e1",
                    "messaging": [
                        _event(message={"mid": "m1", "text": "a"}),
                        _event(message={"mid": "m2", "text": "b"}),
                    ],
                },
                {"id": "e2", "messaging": [_event(message={"mid": "m3", "text": "c"})]},
            ]
        }

        jobs = extract_jobs(payload, now_ms=NOW_MS)

        assert [j.message_id for j in jobs] == ["m1", "m2", "m3"]
        assert [j.thread_id for j in jobs] == ["e1_user_1", "e1_user_1", "e2_user_1"]
