"""In-process metrics for the reply agent.

Counters, gauges and histograms keyed by label sets, held in a process-wide
registry and exported in Prometheus text format from ``GET /metrics``.
Nothing is pushed anywhere; a scraper is expected to pull.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from threading import Lock
from typing import Any

LabelKey = tuple[tuple[str, str], ...]

PREFIX = "dm_reply_agent"


class MetricType(StrEnum):
    """Types of metrics."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """One labelled sample of a metric."""

    name: str
    type: MetricType
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    help_text: str = ""


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted(labels.items())) if labels else ()


def _render_labels(labels: dict[str, str] | LabelKey) -> str:
    pairs = labels.items() if isinstance(labels, dict) else labels
    body = ",".join(f'{k}="{v}"' for k, v in pairs)
    return f"{{{body}}}" if body else ""


class _Metric:
    """Shared state of label-keyed metrics."""

    type: MetricType

    def __init__(self, name: str, help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._lock = Lock()

    def header(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}"] if self.help_text else []
        lines.append(f"# TYPE {self.name} {self.type}")
        return lines

    def expose(self) -> list[str]:
        raise NotImplementedError


class _ScalarMetric(_Metric):
    def __init__(self, name: str, help_text: str = "") -> None:
        super().__init__(name, help_text)
        self._values: dict[LabelKey, float] = defaultdict(float)

    def _add(self, amount: float, labels: dict[str, str] | None) -> None:
        with self._lock:
            self._values[_label_key(labels)] += amount

    def get(self, labels: dict[str, str] | None = None) -> float:
        """Return the value for a label set, zero if never touched."""
        with self._lock:
            return self._values.get(_label_key(labels), 0)

    def get_all(self) -> list[MetricValue]:
        """Return one sample per label set seen so far."""
        with self._lock:
            items = list(self._values.items())
        return [
            MetricValue(
                name=self.name,
                type=self.type,
                value=value,
                labels=dict(key),
                help_text=self.help_text,
            )
            for key, value in items
        ]

    def expose(self) -> list[str]:
        lines = self.header()
        lines.extend(
            f"{self.name}{_render_labels(sample.labels)} {sample.value}"
            for sample in self.get_all()
        )
        return lines


class Counter(_ScalarMetric):
    """A monotonically increasing counter.

    Example:
        sent = Counter("messages_sent_total", "Outbound messages")
        sent.inc(labels={"mode": "auto"})
    """

    type = MetricType.COUNTER

    def inc(self, value: float = 1, labels: dict[str, str] | None = None) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        self._add(value, labels)


class Gauge(_ScalarMetric):
    """A value that goes up and down, such as queue depth."""

    type = MetricType.GAUGE

    def set(self, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_label_key(labels)] = value

    def inc(self, value: float = 1, labels: dict[str, str] | None = None) -> None:
        self._add(value, labels)

    def dec(self, value: float = 1, labels: dict[str, str] | None = None) -> None:
        self._add(-value, labels)


@dataclass
class _Series:
    counts: list[int]
    count: int = 0
    total: float = 0.0
    low: float = float("inf")
    high: float = float("-inf")


class Histogram(_Metric):
    """Distribution of observed values, mostly durations in seconds.

    Bucket counts are kept per bucket (an observation lands only in the
    smallest bucket that holds it). The Prometheus export accumulates them.
    """

    type = MetricType.HISTOGRAM

    DEFAULT_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf"))

    def __init__(
        self,
        name: str,
        help_text: str = "",
        buckets: tuple[float, ...] | None = None,
    ) -> None:
        super().__init__(name, help_text)
        self._buckets = buckets or self.DEFAULT_BUCKETS
        self._series: dict[LabelKey, _Series] = {}

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        key = _label_key(labels)
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = _Series(counts=[0] * len(self._buckets))
            for index, bound in enumerate(self._buckets):
                if value <= bound:
                    series.counts[index] += 1
                    break
            series.count += 1
            series.total += value
            series.low = min(series.low, value)
            series.high = max(series.high, value)

    def get_stats(self, labels: dict[str, str] | None = None) -> dict[str, float]:
        """Return count, sum, min, max and mean, all zero when empty."""
        with self._lock:
            series = self._series.get(_label_key(labels))
            if series is None or series.count == 0:
                return {"count": 0, "sum": 0, "min": 0, "max": 0, "mean": 0}
            return {
                "count": series.count,
                "sum": series.total,
                "min": series.low,
                "max": series.high,
                "mean": series.total / series.count,
            }

    def get_buckets(self, labels: dict[str, str] | None = None) -> dict[float, int]:
        """Return per-bucket counts keyed by upper bound."""
        with self._lock:
            series = self._series.get(_label_key(labels))
            counts = list(series.counts) if series else [0] * len(self._buckets)
        return dict(zip(self._buckets, counts, strict=True))

    def expose(self) -> list[str]:
        lines = self.header()
        with self._lock:
            items = [(key, list(s.counts), s.count, s.total) for key, s in self._series.items()]

        for key, counts, count, total in items:
            running = 0
            for bound, hits in zip(self._buckets, counts, strict=True):
                running += hits
                le = "+Inf" if bound == float("inf") else str(bound)
                lines.append(f"{self.name}_bucket{_render_labels(key + (('le', le),))} {running}")
            suffix = _render_labels(key)
            lines.append(f"{self.name}_sum{suffix} {total}")
            lines.append(f"{self.name}_count{suffix} {count}")
        return lines


class MetricsRegistry:
    """Process-wide holder of every metric the agent records.

    Example:
        get_metrics().jobs_enqueued.inc(len(jobs))
    """

    _instance: MetricsRegistry | None = None
    _lock = Lock()

    def __init__(self) -> None:
        # Intake
        self.webhooks_received = Counter(
            f"{PREFIX}_webhooks_received_total", "Webhook deliveries by outcome"
        )
        self.jobs_enqueued = Counter(
            f"{PREFIX}_jobs_enqueued_total", "Jobs extracted from webhooks and enqueued"
        )

        # Processing
        self.jobs_processed = Counter(
            f"{PREFIX}_jobs_processed_total", "Jobs reaching a terminal state, by result"
        )
        self.jobs_failed = Counter(
            f"{PREFIX}_jobs_failed_total", "Jobs abandoned after an unexpected error"
        )
        self.drafts_generated = Counter(
            f"{PREFIX}_drafts_generated_total", "Drafts produced, by source"
        )
        self.classifier_fallbacks = Counter(
            f"{PREFIX}_classifier_fallbacks_total",
            "Classifier failures replaced by the fallback draft",
        )

        # Delivery
        self.messages_sent = Counter(
            f"{PREFIX}_messages_sent_total", "Outbound messages delivered, by mode"
        )
        self.send_errors = Counter(
            f"{PREFIX}_send_errors_total", "Outbound delivery failures, by mode"
        )

        # Queue
        self.queue_pending = Gauge(f"{PREFIX}_queue_pending", "Jobs waiting in the queue")
        self.queue_in_flight = Gauge(f"{PREFIX}_queue_in_flight", "Jobs being processed")

        # Durations
        self.processing_duration = Histogram(
            f"{PREFIX}_processing_duration_seconds", "Job processing duration in seconds"
        )
        self.classifier_duration = Histogram(
            f"{PREFIX}_classifier_duration_seconds", "Model classifier call duration in seconds"
        )
        self.send_duration = Histogram(
            f"{PREFIX}_send_duration_seconds", "Outbound send duration in seconds"
        )

        self._start_time = time.time()

    @classmethod
    def get_instance(cls) -> MetricsRegistry:
        """Return the shared registry, creating it on first use."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the shared registry so the next access starts from zero."""
        with cls._lock:
            cls._instance = None

    def get_uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def _all(self) -> list[_Metric]:
        return [value for value in vars(self).values() if isinstance(value, _Metric)]

    def get_all_metrics(self) -> dict[str, Any]:
        """Summarize the metrics as a nested dictionary."""
        return {
            "uptime_seconds": self.get_uptime_seconds(),
            "webhooks": {
                outcome: self.webhooks_received.get({"outcome": outcome})
                for outcome in ("accepted", "rejected")
            },
            "jobs": {
                "enqueued": self.jobs_enqueued.get(),
                "failed": self.jobs_failed.get(),
                "results": {
                    sample.labels.get("result", ""): sample.value
                    for sample in self.jobs_processed.get_all()
                },
            },
            "classifier": {
                "fallbacks": self.classifier_fallbacks.get(),
                "duration_stats": self.classifier_duration.get_stats(),
            },
            "delivery": {
                "sent": self.messages_sent.get({"mode": "auto"}),
                "sent_manual": self.messages_sent.get({"mode": "manual"}),
                "errors": self.send_errors.get({"mode": "auto"}),
                "errors_manual": self.send_errors.get({"mode": "manual"}),
            },
            "queue": {
                "pending": self.queue_pending.get(),
                "in_flight": self.queue_in_flight.get(),
            },
            "processing": {
                "duration_stats": self.processing_duration.get_stats(),
            },
        }

    def to_prometheus_format(self) -> str:
        """Render every metric in Prometheus text exposition format."""
        lines: list[str] = []
        for metric in self._all():
            lines.extend(metric.expose())

        uptime = f"{PREFIX}_uptime_seconds"
        lines.append(f"# HELP {uptime} Agent uptime in seconds")
        lines.append(f"# TYPE {uptime} gauge")
        lines.append(f"{uptime} {self.get_uptime_seconds()}")
        return "\n".join(lines) + "\n"


def get_metrics() -> MetricsRegistry:
    """Return the process-wide metrics registry."""
    return MetricsRegistry.get_instance()


class Timer:
    """Record the duration of a ``with`` block into a histogram.

    The observation is recorded even when the block raises. ``elapsed`` is
    available after the block exits.

    Example:
        with Timer(metrics.send_duration):
            await delivery.send_message(recipient_id, text)
    """

    def __init__(self, histogram: Histogram, labels: dict[str, str] | None = None) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> Timer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed = time.perf_counter() - self._start
        self._histogram.observe(self.elapsed, labels=self._labels)
