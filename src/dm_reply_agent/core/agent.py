"""The Agent: owner of every long-lived component of a running service.

The HTTP layer hands webhook jobs to ``Agent.submit``; the job queue feeds
them to the processor; ``start`` and ``stop`` bracket the lifetime of the
store and the delivery client.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from dm_reply_agent.config.schema import AgentConfig
from dm_reply_agent.core.classification import ClassificationPipeline, NullClassifier
from dm_reply_agent.core.job_queue import JobQueue
from dm_reply_agent.core.policy import PolicyEngine
from dm_reply_agent.core.processor import MessageProcessor
from dm_reply_agent.core.rules import KeywordRules
from dm_reply_agent.models.job import Job
from dm_reply_agent.utils.async_helpers import AgentError
from dm_reply_agent.utils.metrics import get_metrics

if TYPE_CHECKING:
    from dm_reply_agent.interfaces.classifier import Classifier
    from dm_reply_agent.interfaces.delivery import DeliveryClient
    from dm_reply_agent.interfaces.store import Store

log = structlog.get_logger()


class StartupError(AgentError):
    """Failed to start the agent."""


class Agent:
    """Main orchestrator that coordinates all components.

    Responsibilities:
    - Build the rules, classification pipeline, policy engine and processor
    - Own the job queue that decouples webhook acknowledgement from work
    - Initialize and release the store and delivery client

    Example:
        agent = Agent(config, store, classifier, delivery)
        await agent.start()
        agent.submit(extract_jobs(payload))
        await agent.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        store: Store,
        classifier: Classifier,
        delivery: DeliveryClient,
    ) -> None:
        """Initialize the Agent.

        Args:
            config: Application configuration
            store: Persistence backend
            classifier: Model classifier used when no keyword rule matches
            delivery: Outbound messaging client
        """
        self._config = config
        self._store = store
        self._classifier = classifier
        self._delivery = delivery

        self._rules = KeywordRules()
        self._pipeline = ClassificationPipeline(self._rules, classifier)
        self._policies = PolicyEngine(store)
        self._processor = MessageProcessor(
            store,
            self._pipeline,
            self._policies,
            delivery,
            account_id=config.instagram.business_account_id,
            confidence_threshold=config.pipeline.confidence_threshold,
        )
        self._queue: JobQueue[Job] = JobQueue(
            concurrency=config.queue.concurrency,
            on_error=self._on_job_error,
        )

        self._running = False

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def store(self) -> Store:
        return self._store

    @property
    def policies(self) -> PolicyEngine:
        return self._policies

    @property
    def processor(self) -> MessageProcessor:
        return self._processor

    @property
    def queue(self) -> JobQueue[Job]:
        return self._queue

    @property
    def is_running(self) -> bool:
        """Return True if the agent is currently running."""
        return self._running

    async def start(self) -> None:
        """Initialize the store and start consuming jobs.

        Raises:
            StartupError: If the store cannot be initialized
        """
        if self._running:
            log.warning("agent_already_running")
            return

        log.info(
            "agent_starting",
            classifier=self._classifier.model_name,
            storage=self._config.storage.backend,
            concurrency=self._config.queue.concurrency,
        )

        try:
            await self._store.initialize()
        except Exception as e:
            log.exception("agent_startup_failed", error=str(e))
            raise StartupError(f"Failed to start agent: {e}") from e

        self._queue.start(self._processor.handle)
        self._running = True
        log.info("agent_started")

    async def stop(self) -> None:
        """Drain in-flight jobs and release resources.

        Jobs still pending are dropped; in-flight jobs get the configured
        shutdown timeout before being cancelled.
        """
        if not self._running:
            log.warning("agent_not_running")
            return

        log.info("agent_stopping", **self._queue.stats)
        self._running = False

        await self._queue.stop(timeout=self._config.queue.shutdown_timeout)

        for name, resource in (("delivery", self._delivery), ("store", self._store)):
            try:
                await resource.close()
            except Exception as e:
                log.warning("resource_close_failed", resource=name, error=str(e))

        log.info("agent_stopped", **self._queue.stats)

    def submit(self, jobs: Iterable[Job]) -> int:
        """Enqueue jobs for background processing.

        Jobs submitted while the agent is not running are logged and dropped.

        Returns:
            Number of jobs enqueued
        """
        if not self._running:
            dropped = sum(1 for _ in jobs)
            if dropped:
                log.warning("jobs_dropped_agent_not_running", count=dropped)
            return 0

        count = 0
        for job in jobs:
            self._queue.enqueue(job)
            count += 1

        if count:
            get_metrics().jobs_enqueued.inc(count)
            log.debug("jobs_enqueued", count=count, pending=self._queue.pending)
        return count

    def _on_job_error(self, error: BaseException, job: Job) -> None:
        get_metrics().jobs_failed.inc()
        log.error(
            "job_processing_failed",
            message_id=job.message_id,
            sender_id=job.sender_id,
            error=str(error),
            error_type=type(error).__name__,
        )


async def create_agent(config: AgentConfig) -> Agent:
    """Build an Agent with the storage, classifier and delivery adapters
    selected in ``config``.

    Raises:
        ValueError: If a selected provider or backend is unknown or unconfigured
    """
    from dm_reply_agent.adapters.delivery.instagram import InstagramDeliveryClient

    store = create_store(config)
    classifier = _create_classifier(config)
    delivery = InstagramDeliveryClient(config.instagram)

    return Agent(config, store, classifier, delivery)


def create_store(config: AgentConfig) -> Store:
    """Create a store based on configuration.

    Raises:
        ValueError: If backend is not supported
    """
    backend = config.storage.backend

    if backend == "memory":
        from dm_reply_agent.adapters.storage.memory import InMemoryStore

        return InMemoryStore()

    if backend == "sql":
        from dm_reply_agent.adapters.storage.sql import SqlAlchemyStore

        return SqlAlchemyStore(config.storage.url, echo=config.storage.echo)

    raise ValueError(f"Unsupported storage backend: {backend}")


def _create_classifier(config: AgentConfig) -> Classifier:
    """Create a classifier based on configuration.

    Raises:
        ValueError: If provider is not supported
    """
    provider = config.classifier.provider

    if provider == "none":
        return NullClassifier()

    if provider == "anthropic":
        if not config.classifier.anthropic:
            raise ValueError("Anthropic configuration required when provider is 'anthropic'")
        from dm_reply_agent.adapters.llm.anthropic import AnthropicClassifier

        return AnthropicClassifier(config.classifier.anthropic, retry_config=config.retry)

    raise ValueError(f"Unsupported classifier provider: {provider}")
