"""Abstract interface for model-based draft classification."""

from typing import Protocol

from ..models.draft import Draft


class Classifier(Protocol):
    """Abstract interface for model classifier integrations.

    This protocol defines the contract that all model adapters
    (Anthropic, OpenAI, local models, etc.) must implement.
    """

    async def generate_draft(self, text: str) -> Draft:
        """
        Classify an inbound message and draft a reply.

        Implementations must not raise: any transport, parsing or schema
        failure is converted into ``FALLBACK_DRAFT`` so that the pipeline
        fails closed and never auto-sends on a classifier error.

        Args:
            text: Inbound message text

        Returns:
            Draft with intent, confidence, reply and approval flag
        """
        ...

    @property
    def model_name(self) -> str:
        """
        Return the model identifier being used.

        Examples:
            - "claude-3-5-haiku-20241022"
            - "none"
        """
        ...
