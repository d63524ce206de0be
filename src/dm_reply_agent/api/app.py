"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from dm_reply_agent._version import __version__
from dm_reply_agent.api import admin, health, webhook
from dm_reply_agent.core.agent import Agent

log = structlog.get_logger()


def create_app(agent: Agent) -> FastAPI:
    """Build the HTTP application around an agent.

    The lifespan starts the agent before the first request and drains it on
    shutdown. Operator routes are mounted only when ``server.admin_enabled``
    is set.

    Args:
        agent: Fully wired agent

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await agent.start()
        try:
            yield
        finally:
            await agent.stop()

    app = FastAPI(title="DM Reply Agent", version=__version__, lifespan=lifespan)
    app.state.agent = agent

    app.include_router(webhook.router)
    app.include_router(health.router)
    if agent.config.server.admin_enabled:
        app.include_router(admin.router)
    else:
        log.info("admin_routes_disabled")

    return app
