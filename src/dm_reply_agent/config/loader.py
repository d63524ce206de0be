"""Load the YAML configuration file with ``${ENV_VAR}`` substitution."""

import os
import re
from pathlib import Path

import structlog
import yaml

from .schema import AgentConfig

log = structlog.get_logger()

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def substitute_env_vars(text: str) -> str:
    """
    Replace every ``${VAR_NAME}`` with the value of that environment variable.

    Lines that are entirely YAML comments are left alone, so a commented-out
    setting does not require its variable to be exported.

    Raises:
        ValueError: If a referenced environment variable is not set
    """

    def lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        try:
            return os.environ[name]
        except KeyError:
            raise ValueError(f"Environment variable {name} not found") from None

    return "".join(
        line if line.lstrip().startswith("#") else _ENV_REFERENCE.sub(lookup, line)
        for line in text.splitlines(keepends=True)
    )


def load_config(path: Path | str) -> AgentConfig:
    """
    Read, substitute, parse and validate a configuration file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Validated AgentConfig instance

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a variable is missing or a cross-field rule fails
        ValidationError: If the document does not match the schema
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    document = yaml.safe_load(substitute_env_vars(path.read_text()))
    config = AgentConfig.model_validate(document or {})
    validate_config(config)
    return config


def validate_config(config: AgentConfig) -> None:
    """
    Check rules that span more than one section.

    Raises:
        ValueError: If a selected provider or backend is not usable
    """
    if config.classifier.provider == "anthropic" and config.classifier.anthropic is None:
        raise ValueError("Anthropic classifier selected but anthropic config missing")

    if config.storage.backend == "sql":
        scheme, sep, _ = config.storage.url.partition("://")
        if not sep:
            raise ValueError(f"Invalid storage url: {config.storage.url}")
        if "+" not in scheme:
            raise ValueError(
                f"Storage url must name an async driver (e.g. sqlite+aiosqlite): {scheme}"
            )

    if not config.webhook.verify_token:
        log.warning("verify_token_missing", detail="subscription handshake will be refused")
