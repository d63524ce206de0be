"""Protocol definitions for pluggable adapters."""

from .classifier import Classifier
from .delivery import DeliveryClient, SendResult
from .store import DuplicateMessageError, MessageNotFoundError, Store, StoreError

__all__ = [
    "Classifier",
    "DeliveryClient",
    "DuplicateMessageError",
    "MessageNotFoundError",
    "SendResult",
    "Store",
    "StoreError",
]
