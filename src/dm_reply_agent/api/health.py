"""Health and metrics routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from dm_reply_agent.api.deps import get_agent
from dm_reply_agent.core.agent import Agent
from dm_reply_agent.utils.health import HealthChecker
from dm_reply_agent.utils.metrics import get_metrics

router = APIRouter(tags=["ops"])


@router.get("/health")
async def health(agent: Agent = Depends(get_agent)) -> JSONResponse:
    """Report dependency health; 503 when any check is unhealthy."""
    checker = HealthChecker(agent.config, store=agent.store, queue=agent.queue)
    report = await checker.run_all_checks()
    return JSONResponse(status_code=200 if report.healthy else 503, content=report.to_dict())


@router.get("/metrics")
async def metrics() -> PlainTextResponse:
    """Expose metrics in Prometheus text format."""
    return PlainTextResponse(
        get_metrics().to_prometheus_format(),
        media_type="text/plain; version=0.0.4",
    )
