"""Webhook intake routes.

Deliveries are acknowledged as soon as the signature checks out and the
jobs are enqueued; processing happens on the agent's job queue.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from dm_reply_agent.api.deps import get_agent
from dm_reply_agent.core.agent import Agent
from dm_reply_agent.core.normalizer import extract_jobs
from dm_reply_agent.utils.metrics import get_metrics
from dm_reply_agent.utils.security import verify_signature

log = structlog.get_logger()

router = APIRouter(tags=["webhook"])

SIGNATURE_HEADER = "x-hub-signature-256"


@router.post("/webhook/{platform}")
async def receive_webhook(
    platform: str,
    request: Request,
    agent: Agent = Depends(get_agent),
) -> Response:
    """Verify, normalize and enqueue one webhook delivery."""
    metrics = get_metrics()
    config = agent.config.webhook

    if platform != config.platform:
        return JSONResponse(status_code=404, content={"error": "Unknown platform"})

    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not verify_signature(raw_body, signature, config.app_secret):
        metrics.webhooks_received.inc(labels={"outcome": "rejected"})
        log.warning("webhook_signature_rejected", platform=platform)
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    payload = _decode_payload(raw_body)
    queued = agent.submit(extract_jobs(payload))

    metrics.webhooks_received.inc(labels={"outcome": "accepted"})
    log.info("webhook_accepted", platform=platform, queued_jobs=queued)
    return JSONResponse(status_code=200, content={"ok": True})


@router.get("/webhook/{platform}")
async def verify_subscription(
    platform: str,
    mode: str | None = Query(None, alias="hub.mode"),
    verify_token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
    agent: Agent = Depends(get_agent),
) -> Response:
    """Answer Meta's subscription handshake by echoing the challenge."""
    config = agent.config.webhook

    if (
        platform != config.platform
        or mode != "subscribe"
        or config.verify_token is None
        or verify_token != config.verify_token
        or challenge is None
    ):
        log.warning("webhook_subscription_rejected", platform=platform, mode=mode)
        return JSONResponse(status_code=403, content={"error": "Verification failed"})

    log.info("webhook_subscription_verified", platform=platform)
    return PlainTextResponse(challenge)


def _decode_payload(raw_body: bytes) -> Any:
    # Malformed JSON is an empty delivery, not an error
    try:
        return json.loads(raw_body) if raw_body else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.warning("webhook_body_not_json", size=len(raw_body))
        return {}
