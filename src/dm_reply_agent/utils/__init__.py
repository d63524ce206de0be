"""Utility functions and helpers.

This module provides various utilities for the DM Reply Agent:
- security: Webhook signatures, secret redaction
- async_helpers: Error hierarchy, async retry
- logging: Structured logging with secret sanitization
- health: Health check utilities
- metrics: Application metrics collection
"""

from dm_reply_agent.utils.health import (
    HealthChecker,
    HealthReport,
    HealthStatus,
)
from dm_reply_agent.utils.logging import (
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
    unbind_context,
)
from dm_reply_agent.utils.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    Timer,
    get_metrics,
)
from dm_reply_agent.utils.security import (
    RedactionError,
    SecretRedactor,
    SecurityError,
    sign_payload,
    verify_signature,
)

__all__ = [
    # Metrics
    "Counter",
    "Gauge",
    # Health
    "HealthChecker",
    "HealthReport",
    "HealthStatus",
    "Histogram",
    # Logging
    "LogFormat",
    "LogLevel",
    "MetricsRegistry",
    # Security
    "RedactionError",
    "SecretRedactor",
    "SecurityError",
    "Timer",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "get_metrics",
    "log_context",
    "sign_payload",
    "unbind_context",
    "verify_signature",
]
