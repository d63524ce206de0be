"""Tests for the metrics collection module."""

import time

import pytest

from dm_reply_agent.utils.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    MetricType,
    Timer,
    get_metrics,
)


class TestCounter:
    """Tests for Counter metric."""

    def test_counter_starts_at_zero(self) -> None:
        """Test counter starts at zero."""
        assert Counter("test_counter", "Test counter").get() == 0

    def test_counter_increments(self) -> None:
        """Test default and explicit increments accumulate."""
        counter = Counter("test_counter")
        counter.inc()
        counter.inc(3)
        assert counter.get() == 4

    def test_counter_with_labels(self) -> None:
        """Test label sets are counted independently."""
        counter = Counter("jobs")
        counter.inc(labels={"result": "SENT"})
        counter.inc(labels={"result": "SKIPPED"})
        counter.inc(labels={"result": "SENT"})

        assert counter.get(labels={"result": "SENT"}) == 2
        assert counter.get(labels={"result": "SKIPPED"}) == 1
        assert counter.get(labels={"result": "ERROR"}) == 0

    def test_counter_cannot_decrease(self) -> None:
        """Test that counter rejects negative values."""
        with pytest.raises(ValueError, match="can only increase"):
            Counter("test_counter").inc(-1)

    def test_counter_get_all(self) -> None:
        """Test getting all counter values."""
        counter = Counter("test_counter", "Help text")
        counter.inc(labels={"mode": "auto"})
        counter.inc(2, labels={"mode": "manual"})

        values = counter.get_all()
        assert len(values) == 2
        assert all(v.type == MetricType.COUNTER for v in values)


class TestGauge:
    """Tests for Gauge metric."""

    def test_gauge_set_inc_dec(self) -> None:
        """Test set, increment and decrement."""
        gauge = Gauge("queue_pending")
        gauge.set(10)
        gauge.inc()
        gauge.dec(3)
        assert gauge.get() == 8

    def test_gauge_can_be_negative(self) -> None:
        """Test gauge can have negative values."""
        gauge = Gauge("test_gauge")
        gauge.set(-5)
        assert gauge.get() == -5


class TestHistogram:
    """Tests for Histogram metric."""

    def test_histogram_stats(self) -> None:
        """Test count, sum, min, max and mean."""
        histogram = Histogram("send_duration")
        for value in (0.5, 1.0, 1.5):
            histogram.observe(value)

        stats = histogram.get_stats()
        assert stats["count"] == 3
        assert stats["sum"] == 3.0
        assert stats["min"] == 0.5
        assert stats["max"] == 1.5
        assert stats["mean"] == 1.0

    def test_histogram_empty(self) -> None:
        """Test histogram with no observations."""
        stats = Histogram("test_histogram").get_stats()
        assert stats["count"] == 0
        assert stats["sum"] == 0

    def test_histogram_buckets(self) -> None:
        """Test each observation lands in its smallest bucket."""
        histogram = Histogram("test_histogram", buckets=(1.0, 5.0, float("inf")))
        histogram.observe(0.5)
        histogram.observe(3.0)
        histogram.observe(15.0)

        buckets = histogram.get_buckets()
        assert buckets[1.0] == 1
        assert buckets[5.0] == 1
        assert buckets[float("inf")] == 1


class TestMetricsRegistry:
    """Tests for MetricsRegistry singleton."""

    def test_singleton_instance(self) -> None:
        """Test that get_instance returns singleton."""
        assert MetricsRegistry.get_instance() is MetricsRegistry.get_instance()
        assert isinstance(get_metrics(), MetricsRegistry)

    def test_reset_replaces_instance(self) -> None:
        """Test that reset starts a fresh registry."""
        registry = get_metrics()
        registry.jobs_enqueued.inc(5)

        MetricsRegistry.reset()

        assert get_metrics() is not registry
        assert get_metrics().jobs_enqueued.get() == 0

    def test_registry_get_all_metrics(self) -> None:
        """Test the dictionary summary groups metrics by concern."""
        registry = MetricsRegistry()
        registry.webhooks_received.inc(labels={"outcome": "accepted"})
        registry.webhooks_received.inc(labels={"outcome": "rejected"})
        registry.jobs_processed.inc(labels={"result": "SENT"})
        registry.messages_sent.inc(labels={"mode": "manual"})

        metrics = registry.get_all_metrics()

        assert metrics["uptime_seconds"] >= 0
        assert metrics["webhooks"] == {"accepted": 1, "rejected": 1}
        assert metrics["jobs"]["results"] == {"SENT": 1}
        assert metrics["delivery"]["sent_manual"] == 1
        assert metrics["delivery"]["sent"] == 0
        assert set(metrics) >= {"classifier", "queue", "processing"}

    def test_registry_prometheus_format(self) -> None:
        """Test Prometheus format export."""
        registry = MetricsRegistry()
        registry.jobs_processed.inc(labels={"result": "SENT"})
        registry.queue_pending.set(3)
        registry.send_duration.observe(0.2)

        output = registry.to_prometheus_format()

        assert "# TYPE dm_reply_agent_jobs_processed_total counter" in output
        assert 'dm_reply_agent_jobs_processed_total{result="SENT"} 1.0' in output
        assert "dm_reply_agent_queue_pending 3" in output
        assert "# TYPE dm_reply_agent_send_duration_seconds histogram" in output
        assert 'dm_reply_agent_send_duration_seconds_bucket{le="+Inf"} 1' in output
        assert "dm_reply_agent_send_duration_seconds_count 1" in output
        assert "dm_reply_agent_uptime_seconds" in output
        assert output.endswith("\n")


class TestTimer:
    """Tests for Timer context manager."""

    def test_timer_records_duration(self) -> None:
        """Test that timer records duration."""
        histogram = Histogram("test_timer")

        with Timer(histogram):
            time.sleep(0.01)

        stats = histogram.get_stats()
        assert stats["count"] == 1
        assert stats["sum"] >= 0.01

    def test_timer_records_on_exception(self) -> None:
        """Test that timer records even if exception is raised."""
        histogram = Histogram("test_timer")

        with pytest.raises(ValueError), Timer(histogram):
            raise ValueError("test error")

        assert histogram.get_stats()["count"] == 1

    def test_timer_exposes_elapsed(self) -> None:
        """Test the measured duration is readable after the block."""
        histogram = Histogram("test_timer")

        with Timer(histogram) as timer:
            time.sleep(0.01)

        assert timer.elapsed >= 0.01
        assert histogram.get_stats()["sum"] == timer.elapsed


class TestHistogramExport:
    """Tests for histogram exposition."""

    def test_buckets_are_cumulative_per_label_set(self) -> None:
        """Test exported buckets accumulate and carry the series labels."""
        histogram = Histogram("latency", buckets=(1.0, 5.0, float("inf")))
        histogram.observe(0.5, labels={"mode": "auto"})
        histogram.observe(3.0, labels={"mode": "auto"})

        lines = histogram.expose()

        assert 'latency_bucket{mode="auto",le="1.0"} 1' in lines
        assert 'latency_bucket{mode="auto",le="5.0"} 2' in lines
        assert 'latency_bucket{mode="auto",le="+Inf"} 2' in lines
        assert 'latency_count{mode="auto"} 2' in lines

    def test_empty_histogram_exports_header_only(self) -> None:
        """Test a histogram without observations emits only its type line."""
        assert Histogram("latency").expose() == ["# TYPE latency histogram"]
