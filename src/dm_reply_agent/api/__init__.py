"""HTTP surface: webhook intake, operator API, health and metrics."""

from dm_reply_agent.api.app import create_app

__all__ = ["create_app"]
