"""WhatsApp Cloud API webhook: verification handshake and inbound messages.

The POST handler answers 200 for every payload it can't or won't process;
anything else makes Meta retry the delivery over and over.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from typing import Any

from fastapi import APIRouter, Query, Request, Response

from salon_bot.api.schemas import WebhookAck
from salon_bot.db.models import Tenant
from salon_bot.services.inbox import InboundMessage, receive_message

logger = logging.getLogger(__name__)

router = APIRouter()


def _first(items: Any) -> dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def extract_inbound(payload: Any) -> InboundMessage | None:
    """Pull the first message out of ``entry[0].changes[0].value``.

    Returns ``None`` for status callbacks, empty or malformed payloads.
    """
    if not isinstance(payload, dict):
        return None
    value = _first(_first(payload.get("entry")).get("changes")).get("value")
    if not isinstance(value, dict):
        return None
    message = _first(value.get("messages"))
    if not message or not message.get("from"):
        return None

    text_obj = message.get("text")
    text = text_obj.get("body", "") if isinstance(text_obj, dict) else ""
    profile = _first(value.get("contacts")).get("profile")
    metadata = value.get("metadata")

    return InboundMessage(
        sender=str(message["from"]),
        message_id=message.get("id"),
        message_type=message.get("type") or "text",
        text=text or "",
        profile_name=profile.get("name") if isinstance(profile, dict) else None,
        phone_number_id=metadata.get("phone_number_id") if isinstance(metadata, dict) else None,
    )


def _token_matches(session_factory, tenant_id: str, token: str) -> bool:
    with session_factory() as session:
        tenant = session.get(Tenant, tenant_id)
        expected = tenant.whatsapp_verify_token if tenant else None
    return bool(expected) and hmac.compare_digest(expected.encode(), token.encode())


@router.get("/webhook", include_in_schema=False)
async def verify_webhook(
    request: Request,
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    tenant: str | None = Query(None),
):
    """Meta subscription handshake: echo the challenge for a matching token."""
    if hub_mode == "subscribe" and hub_token and tenant:
        session_factory = request.app.state.session_factory
        if await asyncio.to_thread(_token_matches, session_factory, tenant, hub_token):
            logger.info("Webhook verified for tenant %s", tenant)
            return Response(content=hub_challenge or "", media_type="text/plain")
    logger.warning("Webhook verification rejected (tenant=%r)", tenant)
    return Response(content="Forbidden", status_code=403, media_type="text/plain")


@router.post(
    "/webhook",
    include_in_schema=False,
    response_model=WebhookAck,
    response_model_exclude_none=True,
)
async def receive_webhook(request: Request, tenant: str | None = Query(None)):
    """Store the inbound message and, if the bot is on, answer it."""
    request_id = getattr(request.state, "request_id", "?")
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("[%s] Webhook body is not JSON", request_id)
        return WebhookAck(status="no_message")

    inbound = extract_inbound(payload)
    if inbound is None:
        return WebhookAck(status="no_message")

    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        logger.error("[%s] Engine not initialised, dropping webhook", request_id)
        return WebhookAck(error="not_ready")

    try:
        result = await asyncio.to_thread(
            receive_message, request.app.state.session_factory, engine, tenant, inbound,
        )
    except Exception:
        logger.exception("[%s] Webhook processing failed", request_id)
        return WebhookAck(error="internal_error")
    return WebhookAck(**result)
