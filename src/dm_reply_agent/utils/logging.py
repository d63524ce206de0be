"""Structured logging for the DM Reply Agent.

All output goes through structlog on top of the standard library, so log
lines from FastAPI, uvicorn and httpx share handlers with our own events.
Every entry passes the secret sanitizer before it is rendered: access
tokens and API keys end up in exception messages more often than one
would like.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from enum import StrEnum
from functools import cache
from pathlib import Path
from typing import Any, cast

import structlog
from structlog.typing import Processor, WrappedLogger

from dm_reply_agent._version import __version__
from dm_reply_agent.utils.security import SecretRedactor

SERVICE_NAME = "dm-reply-agent"

# Third-party loggers that are chatty at INFO (one line per HTTP request).
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "sqlalchemy.engine", "uvicorn.access")


class LogFormat(StrEnum):
    """Log output format options."""

    JSON = "json"
    CONSOLE = "console"


class LogLevel(StrEnum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@cache
def _redactor() -> SecretRedactor:
    return SecretRedactor(placeholder="[REDACTED]")


def sanitize_log_value(value: Any) -> Any:
    """Redact secrets from a log value, descending into containers.

    Strings are redacted, dicts keep their keys, lists and tuples keep their
    type. Anything else is returned untouched.
    """
    if isinstance(value, str):
        return _redactor().redact(value)
    if isinstance(value, dict):
        return {key: sanitize_log_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(sanitize_log_value(item) for item in value)
    return value


def secret_sanitizer(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor that redacts secrets from every field."""
    return cast(MutableMapping[str, Any], sanitize_log_value(event_dict))


def add_context_processor(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor that tags entries with service name and version."""
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = __version__
    return event_dict


def _renderer(log_format: LogFormat) -> Processor:
    if log_format is LogFormat.JSON:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(), exception_formatter=structlog.dev.plain_traceback
    )


def _handlers(level: int, file_path: Path | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if file_path is not None:
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(file_path))
        except OSError as e:
            # Console output still works; report and carry on.
            print(f"Could not open log file {file_path}: {e}", file=sys.stderr)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    log_format: LogFormat | str = LogFormat.JSON,
    file_path: Path | str | None = None,
    file_enabled: bool = False,
) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        level: Minimum level, case-insensitive when given as a string
        log_format: ``json`` for log shipping, ``console`` for a terminal
        file_path: Optional log file, created with its parent directories
        file_enabled: Whether ``file_path`` is used

    Example:
        configure_logging(level="debug", log_format="console")
    """
    level = LogLevel(level.upper()) if isinstance(level, str) else level
    log_format = LogFormat(log_format.lower()) if isinstance(log_format, str) else log_format
    numeric_level = logging.getLevelName(level.value)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        secret_sanitizer,
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _renderer(log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    log_file = Path(file_path) if file_enabled and file_path else None
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=_handlers(numeric_level, log_file),
        force=True,
    )

    quiet_level = logging.DEBUG if level is LogLevel.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(quiet_level, numeric_level))


def get_logger(name: str | None = None) -> WrappedLogger:
    """Get a structured logger, usually ``get_logger(__name__)``."""
    return cast(WrappedLogger, structlog.get_logger(name))


def bind_context(**kwargs: Any) -> None:
    """Attach key-value pairs to every subsequent log entry in this context.

    Example:
        bind_context(message_id="mid_123")
        log.info("job_started")  # carries message_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove previously bound keys."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Remove all bound keys."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind keys for the duration of a ``with`` block.

    Each asyncio task has its own copy of the context, so jobs running
    side by side on the queue never see each other's ids.
    """
    bind_context(**kwargs)
    try:
        yield
    finally:
        unbind_context(*kwargs)
