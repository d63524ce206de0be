"""Webhook signatures and secret hygiene.

Both halves fail closed: a signature that cannot be parsed is a bad
signature, and a redactor that cannot run raises instead of handing back
text that may still hold a token.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from typing import TYPE_CHECKING, NamedTuple

import structlog

if TYPE_CHECKING:
    from collections.abc import Sequence

log = structlog.get_logger()

SIGNATURE_PREFIX = "sha256="

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_SENSITIVE_KEY_PARTS = ("token", "key", "secret", "password", "credential")


class SecurityError(Exception):
    """Base exception for security-related errors."""


class RedactionError(SecurityError):
    """Raised when secret redaction fails."""


def _hmac_sha256(raw_body: bytes, app_secret: str) -> hmac.HMAC:
    return hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256)


def verify_signature(
    raw_body: bytes | str,
    header_signature: str | None,
    app_secret: str,
) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw body.

    The header must read ``sha256=<hex>``, the hex being the HMAC-SHA256 of
    the body bytes exactly as received, keyed with the app secret. The
    digests are compared in constant time.

    Args:
        raw_body: Request body exactly as received.
        header_signature: Header value, None when absent.
        app_secret: Shared app secret.

    Returns:
        True only if the signature matches.
    """
    if not header_signature or not header_signature.startswith(SIGNATURE_PREFIX):
        return False

    try:
        received = bytes.fromhex(header_signature.removeprefix(SIGNATURE_PREFIX).strip())
    except ValueError:
        return False

    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    return hmac.compare_digest(received, _hmac_sha256(body, app_secret).digest())


def sign_payload(raw_body: bytes, app_secret: str) -> str:
    """Return the ``sha256=<hex>`` header value Meta would send for a body."""
    return SIGNATURE_PREFIX + _hmac_sha256(raw_body, app_secret).hexdigest()


class SecretPattern(NamedTuple):
    """A compiled secret detector."""

    regex: re.Pattern[str]
    name: str


class SecretRedactor:
    """Replaces credentials found in free text with a placeholder.

    Used on everything that leaves the process: log entries and the
    customer text sent to the model classifier.

    Usage:
        redactor = SecretRedactor()
        safe_text = redactor.redact(text)
    """

    DEFAULT_PATTERNS: tuple[tuple[str, str], ...] = (
        (
            r"(?i)(api[_-]?key|secret|token|password|credential)\s*[=:]\s*[\"']?[\w-]{16,}",
            "Generic secret",
        ),
        (r"EAA[a-zA-Z0-9]{20,}", "Meta access token"),
        (r"(?i)bearer\s+[\w.-]{20,}", "Bearer token"),
        (r"sk-ant-[\w-]{20,}", "Anthropic API key"),
        (r"sk-[a-zA-Z0-9]{48}", "OpenAI legacy API key"),
        (r"sk-proj-[a-zA-Z0-9]{20,}", "OpenAI project API key"),
        (
            r"(?i)(postgres(?:ql)?|mysql|sqlite\+\w+|redis)://[^:/\s]+:[^@\s]+@[^\s]+",
            "Database connection string",
        ),
        (r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----", "Private key header"),
        (r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*", "JWT token"),
    )

    def __init__(
        self,
        placeholder: str = "[REDACTED]",
        custom_patterns: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        """Compile the default patterns plus any custom ones.

        Args:
            placeholder: Replacement for each detected secret.
            custom_patterns: Extra ``(regex, name)`` pairs.

        Raises:
            RedactionError: If a pattern does not compile.
        """
        self.placeholder = placeholder
        self._compiled: list[SecretPattern] = []

        for source, name in (*self.DEFAULT_PATTERNS, *(custom_patterns or ())):
            try:
                self._compiled.append(SecretPattern(re.compile(source), name))
            except re.error as e:
                log.error("pattern_compilation_failed", pattern_name=name, error=str(e))
                raise RedactionError(f"Failed to compile secret pattern {name!r}: {e}") from e

    @property
    def patterns(self) -> list[re.Pattern[str]]:
        """Return the compiled patterns in application order."""
        return [pattern.regex for pattern in self._compiled]

    def redact(self, text: str) -> str:
        """Return ``text`` with every detected secret replaced.

        Raises:
            RedactionError: If any pattern fails to run.
        """
        if not text:
            return text

        try:
            for pattern in self._compiled:
                text = pattern.regex.sub(self.placeholder, text)
        except Exception as e:
            log.error("redaction_failed", error=str(e))
            raise RedactionError(f"Redaction failed: {e}") from e
        return text


def sanitize_for_logging(text: str, max_length: int = 200) -> str:
    """Make customer text safe to put on a log line.

    DM text is attacker-controlled: ANSI colour codes are dropped, control
    characters and newlines become spaces, and the result is truncated.
    """
    if not text:
        return text

    text = _CONTROL_CHARS.sub(" ", _ANSI_ESCAPE.sub("", text))
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def mask_config_value(key: str, value: str) -> str:
    """Mask a configuration value whose key names a credential.

    Long values keep four characters at each end, short ones are fully
    hidden. Keys without a sensitive word pass through.
    """
    if not any(part in key.lower() for part in _SENSITIVE_KEY_PARTS):
        return value
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***"
