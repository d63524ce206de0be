"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from dm_reply_agent.core.agent import Agent


def get_agent(request: Request) -> Agent:
    """Return the agent attached to the application."""
    agent: Agent = request.app.state.agent
    return agent
