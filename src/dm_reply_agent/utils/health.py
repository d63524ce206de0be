"""Health checks behind ``GET /health`` and ``--health-check``.

Each check inspects one dependency (configuration, classifier provider,
storage, job queue) and reports healthy, degraded or unhealthy. The report
is unhealthy as soon as one check is.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from dm_reply_agent.config.schema import AgentConfig
    from dm_reply_agent.core.job_queue import JobQueue
    from dm_reply_agent.interfaces.store import Store

log = structlog.get_logger()

# Pending jobs per concurrency slot before the queue reports degraded
QUEUE_BACKLOG_FACTOR = 100


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class CheckResult:
    """Outcome of one dependency check."""

    name: str
    status: HealthStatus
    message: str
    latency_ms: float | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthReport:
    """All check results plus the overall verdict."""

    healthy: bool
    status: HealthStatus
    timestamp: datetime
    checks: list[CheckResult]
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_checks(cls, checks: list[CheckResult]) -> HealthReport:
        """Derive the overall status from individual results.

        Any unhealthy check makes the report unhealthy. Degraded checks
        leave it healthy but degraded.
        """
        statuses = [check.status for check in checks]
        if HealthStatus.UNHEALTHY in statuses:
            status = HealthStatus.UNHEALTHY
        elif all(s is HealthStatus.HEALTHY for s in statuses):
            status = HealthStatus.HEALTHY
        else:
            status = HealthStatus.DEGRADED

        return cls(
            healthy=status is not HealthStatus.UNHEALTHY,
            status=status,
            timestamp=datetime.now(UTC),
            checks=checks,
            details={
                "total_checks": len(checks),
                "healthy_checks": statuses.count(HealthStatus.HEALTHY),
                "degraded_checks": statuses.count(HealthStatus.DEGRADED),
                "unhealthy_checks": statuses.count(HealthStatus.UNHEALTHY),
            },
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "healthy": self.healthy,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "checks": [
                {**asdict(check), "status": check.status.value} for check in self.checks
            ],
            "details": self.details,
        }


class HealthChecker:
    """Runs the dependency checks concurrently.

    Storage and queue checks run only when those components are supplied,
    so the CLI can check configuration alone before anything is started.

    Example:
        report = await HealthChecker(config, store=store, queue=queue).run_all_checks()
    """

    def __init__(
        self,
        config: AgentConfig,
        store: Store | None = None,
        queue: JobQueue[Any] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._queue = queue

    async def run_all_checks(self) -> HealthReport:
        """Run every applicable check and build the report."""
        pending: dict[str, Awaitable[CheckResult]] = {
            "config": self._check_config(),
            "classifier": self._check_classifier(),
        }
        if self._store is not None:
            pending["storage"] = self._check_storage(self._store)
        if self._queue is not None:
            pending["queue"] = self._check_queue(self._queue)

        outcomes = await asyncio.gather(*pending.values(), return_exceptions=True)

        checks: list[CheckResult] = []
        for name, outcome in zip(pending, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                log.warning("health_check_crashed", check=name, error=str(outcome))
                outcome = CheckResult(
                    name=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"Check failed with exception: {outcome}",
                )
            checks.append(outcome)

        report = HealthReport.from_checks(checks)
        log.debug("health_check_complete", status=report.status.value, checks_run=len(checks))
        return report

    async def _check_config(self) -> CheckResult:
        """Check that required secrets are present and substituted."""
        missing = [
            name
            for name, value in (
                ("webhook.app_secret", self._config.webhook.app_secret),
                ("instagram.access_token", self._config.instagram.access_token),
            )
            if not value or value.startswith("${")
        ]

        if missing:
            return CheckResult(
                name="config",
                status=HealthStatus.UNHEALTHY,
                message=f"Missing configuration: {', '.join(missing)}",
            )

        return CheckResult(
            name="config",
            status=HealthStatus.HEALTHY,
            message="Configuration valid",
            details={
                "platform": self._config.webhook.platform,
                "storage_backend": self._config.storage.backend,
                "classifier_provider": self._config.classifier.provider,
            },
        )

    async def _check_classifier(self) -> CheckResult:
        """Check classifier provider configuration."""
        provider = self._config.classifier.provider

        if provider == "none":
            return CheckResult(
                name="classifier",
                status=HealthStatus.DEGRADED,
                message="No model classifier, unmatched messages go to a human",
            )

        anthropic_config = self._config.classifier.anthropic
        if not anthropic_config:
            return CheckResult(
                name="classifier",
                status=HealthStatus.UNHEALTHY,
                message="Anthropic configuration not found",
            )
        if not anthropic_config.api_key or anthropic_config.api_key.startswith("${"):
            return CheckResult(
                name="classifier",
                status=HealthStatus.UNHEALTHY,
                message="Anthropic API key not configured",
            )
        return CheckResult(
            name="classifier",
            status=HealthStatus.HEALTHY,
            message="Anthropic configured",
            details={"provider": "anthropic", "model": anthropic_config.model},
        )

    async def _check_storage(self, store: Store) -> CheckResult:
        """Check that the store answers a ping."""
        start = time.monotonic()
        try:
            await store.ping()
        except Exception as e:
            return CheckResult(
                name="storage",
                status=HealthStatus.UNHEALTHY,
                message=f"Storage unreachable: {e}",
                latency_ms=(time.monotonic() - start) * 1000,
            )

        return CheckResult(
            name="storage",
            status=HealthStatus.HEALTHY,
            message="Storage reachable",
            latency_ms=(time.monotonic() - start) * 1000,
            details={"backend": self._config.storage.backend},
        )

    async def _check_queue(self, queue: JobQueue[Any]) -> CheckResult:
        """Check that the queue is started and not badly backlogged."""
        stats = queue.stats

        if not queue.is_started:
            return CheckResult(
                name="queue",
                status=HealthStatus.UNHEALTHY,
                message="Job queue not started",
                details=stats,
            )

        if queue.pending > queue.concurrency * QUEUE_BACKLOG_FACTOR:
            return CheckResult(
                name="queue",
                status=HealthStatus.DEGRADED,
                message=f"Job queue backlog: {queue.pending} pending",
                details=stats,
            )

        return CheckResult(
            name="queue",
            status=HealthStatus.HEALTHY,
            message="Job queue running",
            details=stats,
        )
