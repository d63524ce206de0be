"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    AgentConfig,
    AnthropicConfig,
    ClassifierConfig,
    InstagramConfig,
    LoggingConfig,
    PipelineConfig,
    QueueConfig,
    RetryConfig,
    ServerConfig,
    StorageConfig,
    WebhookConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "AgentConfig",
    # Top-level configs
    "WebhookConfig",
    "InstagramConfig",
    "ClassifierConfig",
    "StorageConfig",
    "QueueConfig",
    "PipelineConfig",
    "ServerConfig",
    "LoggingConfig",
    "RetryConfig",
    # Provider-specific configs
    "AnthropicConfig",
]
