"""Concrete implementations of provider interfaces."""

from .delivery.instagram import InstagramDeliveryClient
from .llm.anthropic import AnthropicClassifier
from .storage.memory import InMemoryStore
from .storage.sql import SqlAlchemyStore

__all__ = [
    "AnthropicClassifier",
    "InMemoryStore",
    "InstagramDeliveryClient",
    "SqlAlchemyStore",
]
