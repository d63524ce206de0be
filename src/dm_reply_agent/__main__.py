"""Command line entry point: ``dm-reply-agent`` / ``python -m dm_reply_agent``.

Loads the YAML configuration, configures logging and then either validates
the configuration (``--dry-run``), checks dependencies (``--health-check``)
or serves the webhook and operator API with uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import uvicorn
from pydantic import ValidationError

from dm_reply_agent._version import __version__
from dm_reply_agent.utils.logging import LogLevel, configure_logging
from dm_reply_agent.utils.security import mask_config_value

if TYPE_CHECKING:
    from dm_reply_agent.config.schema import AgentConfig

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dm-reply-agent",
        description="Automatic replies to Instagram direct messages",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file (default: config/config.yaml)",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--format",
        choices=["json", "console"],
        default="console",
        help="Log format until the config file is read (default: console)",
    )
    parser.add_argument(
        "-p", "--port", type=int, default=None, help="Listen port (default: server.port)"
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run", action="store_true", help="Validate the configuration and exit"
    )
    mode.add_argument(
        "--health-check",
        action="store_true",
        help="Check configuration, classifier and storage, then exit",
    )
    return parser


def describe_config(config: AgentConfig) -> dict[str, str]:
    """Flatten the settings worth echoing at startup, with secrets masked."""
    settings = {
        "webhook.platform": config.webhook.platform,
        "webhook.app_secret": config.webhook.app_secret,
        "instagram.business_account_id": config.instagram.business_account_id,
        "instagram.access_token": config.instagram.access_token,
        "instagram.graph_api_version": config.instagram.graph_api_version,
        "classifier.provider": config.classifier.provider,
        "storage.backend": config.storage.backend,
        "queue.concurrency": str(config.queue.concurrency),
        "pipeline.confidence_threshold": str(config.pipeline.confidence_threshold),
    }
    if config.classifier.anthropic is not None:
        settings["classifier.anthropic.api_key"] = config.classifier.anthropic.api_key
        settings["classifier.anthropic.model"] = config.classifier.anthropic.model
    return {key: mask_config_value(key, value) for key, value in settings.items()}


async def check_health(config: AgentConfig) -> int:
    """Probe configuration, classifier and storage once.

    Returns:
        Process exit code, 0 when healthy or degraded
    """
    from dm_reply_agent.core.agent import create_store
    from dm_reply_agent.utils.health import HealthChecker

    store = create_store(config)
    try:
        await store.initialize()
        report = await HealthChecker(config, store=store).run_all_checks()
    finally:
        await store.close()

    for check in report.checks:
        log.info("health_check", check=check.name, status=check.status.value, message=check.message)

    if report.healthy:
        log.info("health_check_passed", status=report.status.value)
        return 0
    log.error("health_check_failed", **report.details)
    return 1


async def serve(config: AgentConfig, port: int | None = None) -> None:
    """Build the agent and serve HTTP until the server is stopped."""
    from dm_reply_agent.api.app import create_app
    from dm_reply_agent.core.agent import create_agent

    agent = await create_agent(config)
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(agent),
            host=config.server.host,
            port=port or config.server.port,
            log_config=None,
        )
    )
    log.info("starting_server", host=config.server.host, port=server.config.port)
    await server.serve()


async def run_agent(
    config_path: Path,
    dry_run: bool = False,
    health_check: bool = False,
    debug: bool = False,
    port: int | None = None,
) -> int:
    """Load configuration and run the selected mode.

    Returns:
        Process exit code
    """
    from dm_reply_agent.config.loader import load_config

    log.info("starting_dm_reply_agent", version=__version__, config_path=str(config_path))

    try:
        config = load_config(config_path)
    except FileNotFoundError as e:
        log.error("configuration_file_not_found", path=str(config_path), error=str(e))
        return 1
    except (ValidationError, ValueError) as e:
        log.error("configuration_invalid", error=str(e))
        return 1

    configure_logging(
        level=LogLevel.DEBUG if debug else config.logging.level,
        log_format=config.logging.format,
        file_path=config.logging.file.path,
        file_enabled=config.logging.file.enabled,
    )
    log.info("configuration_loaded", **describe_config(config))

    if dry_run:
        log.info("dry_run_config_valid")
        return 0

    try:
        if health_check:
            return await check_health(config)
        await serve(config, port)
    except Exception:
        log.exception("fatal_error")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(level=LogLevel.DEBUG if args.debug else LogLevel.INFO, log_format=args.format)

    try:
        return asyncio.run(
            run_agent(
                args.config,
                dry_run=args.dry_run,
                health_check=args.health_check,
                debug=args.debug,
                port=args.port,
            )
        )
    except KeyboardInterrupt:
        log.info("shutting_down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
