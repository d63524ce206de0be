"""Operator JSON API.

Lets an operator inspect recent traffic, assign contacts to segments, edit
reply policies and send replies by hand.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from dm_reply_agent.api.deps import get_agent
from dm_reply_agent.core.agent import Agent
from dm_reply_agent.core.policy import parse_segment
from dm_reply_agent.interfaces.store import MessageNotFoundError
from dm_reply_agent.models.records import (
    Contact,
    DeliveryLog,
    Message,
    PolicySettings,
    ReplyPolicy,
    Segment,
)
from dm_reply_agent.utils.async_helpers import DeliveryError

log = structlog.get_logger()

router = APIRouter(prefix="/admin", tags=["admin"])

RECENT_CONTACTS = 50
RECENT_MESSAGES = 20


class SegmentedRequest(BaseModel):
    segment: Segment

    @field_validator("segment", mode="before")
    @classmethod
    def _parse_segment(cls, value: Any) -> Segment:
        if isinstance(value, Segment):
            return value
        if not isinstance(value, str):
            raise ValueError("segment must be a string")
        return parse_segment(value)


class ContactSegmentRequest(SegmentedRequest):
    sender_id: str = Field(min_length=1)

    @field_validator("sender_id")
    @classmethod
    def _strip_sender(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("sender_id must not be blank")
        return value


class PolicyRequest(SegmentedRequest):
    auto_send: bool
    require_human_approval: bool
    template: str | None = None

    def to_settings(self) -> PolicySettings:
        template = self.template.strip() if self.template else None
        return PolicySettings(
            auto_send=self.auto_send,
            require_human_approval=self.require_human_approval,
            template=template or None,
        )


class SendRequest(BaseModel):
    message_id: str = Field(min_length=1)
    reply: str

    @field_validator("reply")
    @classmethod
    def _strip_reply(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("reply must not be blank")
        return value


@router.get("/state")
async def get_state(agent: Agent = Depends(get_agent)) -> dict[str, Any]:
    """Return policies, recent contacts and recent inbound messages."""
    policies = await agent.policies.ensure_all_policies()
    contacts = await agent.store.list_contacts(limit=RECENT_CONTACTS)
    messages = await agent.store.list_inbound_messages(limit=RECENT_MESSAGES)

    logs = await agent.store.list_delivery_logs([m.id for m in messages])
    logs_by_message: dict[str, list[DeliveryLog]] = {}
    for entry in logs:
        logs_by_message.setdefault(entry.message_id, []).append(entry)

    return {
        "policies": [_policy_dict(p) for p in policies],
        "contacts": [_contact_dict(c) for c in contacts],
        "messages": [_message_dict(m, logs_by_message.get(m.id, [])) for m in messages],
    }


@router.post("/contact-segment")
async def set_contact_segment(
    body: ContactSegmentRequest,
    agent: Agent = Depends(get_agent),
) -> dict[str, Any]:
    contact = await agent.policies.set_segment(body.sender_id, body.segment)
    return {"ok": True, "contact": _contact_dict(contact)}


@router.post("/policy")
async def update_policy(
    body: PolicyRequest,
    agent: Agent = Depends(get_agent),
) -> dict[str, Any]:
    policy = await agent.policies.update_policy(body.segment, body.to_settings())
    return {"ok": True, "policy": _policy_dict(policy)}


@router.post("/send", response_model=None)
async def send_reply(
    body: SendRequest,
    agent: Agent = Depends(get_agent),
) -> dict[str, Any] | JSONResponse:
    """Send an operator-written reply to a stored inbound message."""
    try:
        outbound = await agent.processor.send_manual(body.message_id, body.reply)
    except MessageNotFoundError:
        return JSONResponse(status_code=404, content={"error": "Inbound message not found"})
    except DeliveryError as e:
        return JSONResponse(
            status_code=502,
            content={"error": "Failed to send message", "detail": str(e)},
        )

    return {"ok": True, "message": _message_dict(outbound, [])}


def _policy_dict(policy: ReplyPolicy) -> dict[str, Any]:
    return {
        "segment": policy.segment.value,
        "auto_send": policy.auto_send,
        "require_human_approval": policy.require_human_approval,
        "template": policy.template,
    }


def _contact_dict(contact: Contact) -> dict[str, Any]:
    return {
        "sender_id": contact.sender_id,
        "segment": contact.segment.value,
        "updated_at": contact.updated_at.isoformat(),
    }


def _message_dict(message: Message, logs: list[DeliveryLog]) -> dict[str, Any]:
    return {
        "id": message.id,
        "platform_message_id": message.platform_message_id,
        "thread_id": message.thread_id,
        "sender_id": message.sender_id,
        "direction": message.direction.value,
        "text": message.text,
        "received_at": message.received_at.isoformat(),
        "intent": message.intent,
        "confidence": message.confidence,
        "suggested_reply": message.suggested_reply,
        "needs_human_approval": message.needs_human_approval,
        "delivery_logs": [
            {
                "status": entry.status.value,
                "error": entry.error,
                "latency_ms": entry.latency_ms,
                "created_at": entry.created_at.isoformat(),
            }
            for entry in logs
        ],
    }
