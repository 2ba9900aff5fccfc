"""FastAPI route definitions for the operator API and scheduled jobs."""

from __future__ import annotations

import asyncio
import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy import select

from salon_bot import config
from salon_bot.api.schemas import (
    BirthdayJobResponse,
    HealthResponse,
    MessageOut,
    OperatorMessageRequest,
    OperatorSendResponse,
)
from salon_bot.db.models import (
    DIRECTION_OUTBOUND,
    MESSAGE_FAILED,
    MESSAGE_SENT,
    Conversation,
    Message,
    Tenant,
    utcnow,
)
from salon_bot.services.birthdays import run_birthday_job
from salon_bot.services.inbox import touch_conversation
from salon_bot.services.whatsapp_client import WhatsAppAPIError, message_id_from

logger = logging.getLogger(__name__)

router = APIRouter()


def require_operator_key(x_api_key: str | None = Header(None)) -> None:
    """Check ``X-API-Key`` against ``OPERATOR_API_KEY`` when one is configured."""
    expected = config.OPERATOR_API_KEY
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


def _get_conversation(session, tenant_id: str, conversation_id: str) -> Conversation:
    conversation = session.get(Conversation, conversation_id)
    if conversation is None or conversation.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    return conversation


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.get(
    "/tenants/{tenant_id}/conversations/{conversation_id}/messages",
    response_model=list[MessageOut],
    dependencies=[Depends(require_operator_key)],
)
async def list_messages(tenant_id: str, conversation_id: str, request: Request):
    """Full thread in chronological order.  Opening it marks it read."""
    session_factory = request.app.state.session_factory

    def _load():
        with session_factory() as session:
            conversation = _get_conversation(session, tenant_id, conversation_id)
            rows = list(
                session.scalars(
                    select(Message)
                    .where(Message.conversation_id == conversation.id)
                    .order_by(Message.created_at, Message.id)
                )
            )
            conversation.unread_count = 0
            session.commit()
            return [MessageOut.model_validate(row) for row in rows]

    return await asyncio.to_thread(_load)


@router.post(
    "/tenants/{tenant_id}/conversations/{conversation_id}/messages",
    response_model=OperatorSendResponse,
    dependencies=[Depends(require_operator_key)],
)
async def send_operator_message(
    tenant_id: str,
    conversation_id: str,
    body: OperatorMessageRequest,
    request: Request,
):
    """Send a human-typed message to the contact and log it in the thread.

    Unlike bot replies, the stored status reflects the real send outcome
    (``sent`` or ``failed``).
    """
    session_factory = request.app.state.session_factory
    gateway_factory = request.app.state.gateway_factory
    request_id = getattr(request.state, "request_id", "?")
    text = body.message.strip()
    if not text:
        raise HTTPException(status_code=422, detail="Message is empty.")

    def _send() -> OperatorSendResponse:
        with session_factory() as session:
            conversation = _get_conversation(session, tenant_id, conversation_id)
            tenant = session.get(Tenant, tenant_id)
            if not tenant.has_gateway_credentials:
                raise HTTPException(
                    status_code=409, detail="WhatsApp is not configured for this tenant.",
                )

            status, wa_id = MESSAGE_SENT, None
            try:
                with gateway_factory(tenant) as gateway:
                    wa_id = message_id_from(gateway.send_text(conversation.contact.phone, text))
            except WhatsAppAPIError:
                logger.exception("[%s] Operator send failed", request_id)
                status = MESSAGE_FAILED

            now = utcnow()
            session.add(Message(
                tenant_id=tenant.id,
                conversation_id=conversation.id,
                contact_id=conversation.contact_id,
                direction=DIRECTION_OUTBOUND,
                content=text,
                message_type="text",
                is_bot_response=False,
                status=status,
                whatsapp_message_id=wa_id,
                created_at=now,
            ))
            session.commit()
            touch_conversation(session, conversation.id, text, now)
            return OperatorSendResponse(status=status, whatsapp_message_id=wa_id)

    result = await asyncio.to_thread(_send)
    if result.status == MESSAGE_FAILED:
        raise HTTPException(
            status_code=502, detail="WhatsApp did not accept the message. It was saved as failed.",
        )
    return result


@router.post(
    "/jobs/birthdays",
    response_model=BirthdayJobResponse,
    dependencies=[Depends(require_operator_key)],
)
async def trigger_birthday_job(request: Request):
    """Entry point for the daily scheduler."""
    return await asyncio.to_thread(
        run_birthday_job,
        request.app.state.session_factory,
        request.app.state.gateway_factory,
    )
