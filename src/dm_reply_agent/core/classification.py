"""Rules-first, model-fallback classification pipeline."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog

from dm_reply_agent.models.draft import FALLBACK_DRAFT, Draft
from dm_reply_agent.utils.metrics import get_metrics

if TYPE_CHECKING:
    from dm_reply_agent.core.rules import KeywordRules
    from dm_reply_agent.interfaces.classifier import Classifier

log = structlog.get_logger()


class ClassificationPipeline:
    """Produces a draft for every inbound text.

    Keyword rules are consulted first. The model classifier is called only
    when no rule matches, and any exception it raises becomes
    ``FALLBACK_DRAFT``, which always requires human approval.

    Example:
        pipeline = ClassificationPipeline(KeywordRules(), classifier)
        draft = await pipeline.classify("Where is my package?")
    """

    def __init__(self, rules: KeywordRules, classifier: Classifier) -> None:
        """Initialize the pipeline.

        Args:
            rules: Deterministic keyword rules
            classifier: Model classifier used as fallback
        """
        self._rules = rules
        self._classifier = classifier

    async def classify(self, text: str) -> Draft:
        """Classify text. Never raises, never returns None.

        Args:
            text: Inbound message text

        Returns:
            Draft from rules, the classifier, or the fallback
        """
        metrics = get_metrics()

        draft = self._rules.generate_draft(text)
        if draft is not None:
            metrics.drafts_generated.inc(labels={"source": "rules"})
            log.debug("rule_draft_matched", intent=draft.intent.value)
            return draft

        start = time.perf_counter()
        try:
            draft = await self._classifier.generate_draft(text)
        except Exception as e:
            log.warning(
                "classifier_failed_using_fallback",
                error=str(e),
                error_type=type(e).__name__,
            )
            metrics.classifier_fallbacks.inc()
            return FALLBACK_DRAFT
        finally:
            metrics.classifier_duration.observe(time.perf_counter() - start)

        if draft is FALLBACK_DRAFT:
            # Classifiers that handle their own failures return the fallback
            metrics.classifier_fallbacks.inc()
        else:
            metrics.drafts_generated.inc(labels={"source": "model"})
        return draft


class NullClassifier:
    """Classifier for rules-only deployments.

    Every message the rules do not match goes to a human.
    """

    @property
    def model_name(self) -> str:
        return "none"

    async def generate_draft(self, text: str) -> Draft:
        return FALLBACK_DRAFT
