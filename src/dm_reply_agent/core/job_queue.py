"""Concurrency-bounded in-process job queue.

The queue decouples webhook acknowledgement from job processing. Jobs are
held in memory only: anything still pending when the process exits is lost,
and a failed job is reported to ``on_error`` but never re-queued.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

from dm_reply_agent.utils.metrics import get_metrics

log = structlog.get_logger()

T = TypeVar("T")

Worker = Callable[[T], Awaitable[object]]
ErrorHook = Callable[[BaseException, T], None]


class JobQueue(Generic[T]):
    """FIFO queue that runs at most ``concurrency`` jobs at a time.

    Dispatch happens on enqueue, on start, and whenever a job finishes, so
    the number of running jobs stays at ``min(concurrency, pending)`` without
    polling. With ``concurrency=1`` jobs execute strictly in enqueue order;
    above 1 only dispatch order is FIFO.

    Example:
        queue = JobQueue[Job](concurrency=2, on_error=report)
        queue.start(processor.handle)
        queue.enqueue(job)
        await queue.join()
    """

    def __init__(
        self,
        concurrency: int = 1,
        on_error: ErrorHook[T] | None = None,
        name: str = "jobs",
    ) -> None:
        """Initialize the queue.

        Args:
            concurrency: Maximum number of jobs executing at once
            on_error: Called with (error, job) when a worker raises
            name: Queue name used in log events

        Raises:
            ValueError: If concurrency is less than 1
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self._concurrency = concurrency
        self._on_error = on_error
        self._name = name

        self._pending: deque[T] = deque()
        self._worker: Worker[T] | None = None
        self._in_flight = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

        # Statistics
        self._processed = 0
        self._failed = 0

    @property
    def concurrency(self) -> int:
        """Return the concurrency limit."""
        return self._concurrency

    @property
    def pending(self) -> int:
        """Return the number of jobs waiting for dispatch."""
        return len(self._pending)

    @property
    def in_flight(self) -> int:
        """Return the number of jobs currently executing."""
        return self._in_flight

    @property
    def is_started(self) -> bool:
        """Return True once a worker has been registered."""
        return self._worker is not None

    @property
    def stats(self) -> dict[str, int]:
        """Return queue statistics."""
        return {
            "pending": self.pending,
            "in_flight": self._in_flight,
            "concurrency": self._concurrency,
            "processed": self._processed,
            "failed": self._failed,
        }

    def start(self, worker: Worker[T]) -> None:
        """Register the worker and dispatch any jobs already queued.

        Must be called from within a running event loop.

        Args:
            worker: Async function invoked once per job
        """
        self._worker = worker
        log.info("queue_started", queue=self._name, concurrency=self._concurrency)
        self._dispatch()

    def enqueue(self, job: T) -> None:
        """Append a job and dispatch if capacity allows.

        Never blocks. Jobs enqueued before ``start`` wait for the worker.

        Args:
            job: Job to process
        """
        self._pending.append(job)
        self._idle.clear()
        self._dispatch()

    async def join(self) -> None:
        """Wait until no job is pending or executing."""
        await self._idle.wait()

    async def stop(self, timeout: float | None = None) -> int:
        """Stop dispatching and wait for in-flight jobs.

        Pending jobs are discarded; in-flight jobs still running after
        ``timeout`` seconds are cancelled.

        Args:
            timeout: Seconds to wait for in-flight jobs (None waits forever)

        Returns:
            Number of pending jobs that were dropped
        """
        dropped = len(self._pending)
        self._pending.clear()
        self._worker = None

        if dropped:
            log.warning("queue_pending_jobs_dropped", queue=self._name, count=dropped)

        if self._tasks:
            log.info("waiting_for_in_flight_jobs", queue=self._name, count=len(self._tasks))
            _done, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)

            if still_running:
                log.warning(
                    "cancelling_in_flight_jobs", queue=self._name, count=len(still_running)
                )
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        self._update_gauges()
        if not self._pending and self._in_flight == 0:
            self._idle.set()

        log.info("queue_stopped", queue=self._name, **self.stats)
        return dropped

    def _dispatch(self) -> None:
        """Start pending jobs until the concurrency limit is reached."""
        if self._worker is None:
            self._update_gauges()
            return

        loop = asyncio.get_running_loop()
        while self._in_flight < self._concurrency and self._pending:
            job = self._pending.popleft()
            self._in_flight += 1

            task = loop.create_task(self._run(self._worker, job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._update_gauges()

    async def _run(self, worker: Worker[T], job: T) -> None:
        """Execute one job and hand the slot to the next."""
        try:
            await worker(job)
            self._processed += 1
        except Exception as e:
            self._failed += 1
            self._report_error(e, job)
        finally:
            self._in_flight -= 1
            if self._pending and self._worker is not None:
                self._dispatch()
            else:
                self._update_gauges()
            if not self._pending and self._in_flight == 0:
                self._idle.set()

    def _report_error(self, error: Exception, job: T) -> None:
        """Pass a worker failure to the error hook."""
        if self._on_error is None:
            log.error(
                "queue_job_failed",
                queue=self._name,
                error=str(error),
                error_type=type(error).__name__,
            )
            return

        try:
            self._on_error(error, job)
        except Exception as hook_error:
            log.exception("queue_error_hook_failed", queue=self._name, error=str(hook_error))

    def _update_gauges(self) -> None:
        metrics = get_metrics()
        metrics.queue_pending.set(len(self._pending))
        metrics.queue_in_flight.set(self._in_flight)
