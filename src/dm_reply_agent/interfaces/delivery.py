"""Abstract interface for outbound message delivery."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class SendResult:
    """Outcome of a successful send."""

    message_id: str  # Platform id of the outbound message
    latency_ms: int


class DeliveryClient(Protocol):
    """Abstract interface for messaging platform send APIs."""

    async def send_message(self, recipient_id: str, text: str) -> SendResult:
        """
        Send a direct message to a platform user.

        Args:
            recipient_id: Platform id of the recipient
            text: Message body

        Returns:
            SendResult with the platform message id and request latency

        Raises:
            DeliveryError: If the platform rejects the send or the transport fails
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
