"""Inbound message intake: tenant resolution, contact/conversation upsert,
message persistence, then hand-off to the conversational engine.

Handlers are stateless and may run concurrently for the same contact, so
the "one contact per phone" and "one active conversation per contact"
rules are enforced by unique indexes; the upserts below fold a lost race
into the row that won instead of failing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salon_bot.config import PREVIEW_LENGTH
from salon_bot.db.models import (
    CONVERSATION_ACTIVE,
    DIRECTION_INBOUND,
    MESSAGE_RECEIVED,
    Contact,
    Conversation,
    Message,
    Tenant,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundMessage:
    """The parts of a WhatsApp notification the bot cares about."""

    sender: str
    message_id: str | None
    message_type: str
    text: str
    profile_name: str | None = None
    phone_number_id: str | None = None


def preview(text: str | None) -> str:
    return (text or "")[:PREVIEW_LENGTH]


# ── Tenant ───────────────────────────────────────────────────────────


def resolve_tenant(
    session: Session,
    tenant_id: str | None,
    phone_number_id: str | None,
) -> Tenant | None:
    """Explicit tenant id wins; otherwise look up by the gateway phone id."""
    if tenant_id:
        tenant = session.get(Tenant, tenant_id)
        if tenant is not None:
            return tenant
        logger.warning("Tenant id %r from query string not found", tenant_id)
    if phone_number_id:
        return session.scalars(
            select(Tenant).where(Tenant.whatsapp_phone_number_id == phone_number_id)
        ).first()
    return None


# ── Contact ──────────────────────────────────────────────────────────


def _find_contact(session: Session, tenant_id: str, phone: str) -> Contact | None:
    return session.scalars(
        select(Contact).where(Contact.tenant_id == tenant_id, Contact.phone == phone)
    ).first()


def upsert_contact(
    session: Session,
    tenant_id: str,
    phone: str,
    profile_name: str | None,
    now: datetime,
) -> Contact:
    """Return the contact for (tenant, phone), creating it on first contact.

    The profile name is only captured at creation; later messages just
    stamp ``last_message_at``.
    """
    contact = _find_contact(session, tenant_id, phone)
    if contact is None:
        contact = Contact(
            tenant_id=tenant_id, phone=phone, name=profile_name, last_message_at=now,
        )
        session.add(contact)
        try:
            session.commit()
            logger.info("Tenant %s: new contact %s", tenant_id, contact.id)
            return contact
        except IntegrityError:
            session.rollback()
            contact = _find_contact(session, tenant_id, phone)
            if contact is None:
                raise
            logger.debug("Tenant %s: lost contact-create race for %s", tenant_id, phone)

    contact.last_message_at = now
    session.commit()
    return contact


# ── Conversation ─────────────────────────────────────────────────────


def _bump_active_conversation(
    session: Session,
    tenant_id: str,
    contact_id: str,
    text: str,
    now: datetime,
) -> int:
    """Atomically increment unread and refresh preview.  Returns rows hit."""
    result = session.execute(
        update(Conversation)
        .where(
            Conversation.tenant_id == tenant_id,
            Conversation.contact_id == contact_id,
            Conversation.status == CONVERSATION_ACTIVE,
        )
        .values(
            unread_count=Conversation.unread_count + 1,
            last_message_preview=preview(text),
            last_message_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount


def find_active_conversation(
    session: Session, tenant_id: str, contact_id: str,
) -> Conversation | None:
    return session.scalars(
        select(Conversation)
        .where(
            Conversation.tenant_id == tenant_id,
            Conversation.contact_id == contact_id,
            Conversation.status == CONVERSATION_ACTIVE,
        )
        .execution_options(populate_existing=True)
    ).first()


def upsert_active_conversation(
    session: Session,
    tenant_id: str,
    contact_id: str,
    text: str,
    now: datetime,
) -> Conversation:
    """Return the contact's active conversation with this message counted."""
    if not _bump_active_conversation(session, tenant_id, contact_id, text, now):
        conversation = Conversation(
            tenant_id=tenant_id,
            contact_id=contact_id,
            status=CONVERSATION_ACTIVE,
            last_message_preview=preview(text),
            last_message_at=now,
            unread_count=1,
        )
        session.add(conversation)
        try:
            session.commit()
            return conversation
        except IntegrityError:
            session.rollback()
            logger.debug("Contact %s: lost conversation-create race", contact_id)
            _bump_active_conversation(session, tenant_id, contact_id, text, now)

    conversation = find_active_conversation(session, tenant_id, contact_id)
    if conversation is None:
        raise RuntimeError(f"Active conversation for contact {contact_id} vanished")
    return conversation


def touch_conversation(session: Session, conversation_id: str, text: str, now: datetime) -> None:
    """Refresh preview/timestamp after an outbound message (unread untouched)."""
    session.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_message_preview=preview(text), last_message_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()


# ── Messages ─────────────────────────────────────────────────────────


def is_duplicate_delivery(session: Session, tenant_id: str, message_id: str | None) -> bool:
    """Whether this WhatsApp message id was already stored (gateway redelivery)."""
    if not message_id:
        return False
    return session.scalars(
        select(Message.id).where(
            Message.tenant_id == tenant_id,
            Message.direction == DIRECTION_INBOUND,
            Message.whatsapp_message_id == message_id,
        )
    ).first() is not None


def record_inbound(
    session: Session,
    conversation: Conversation,
    inbound: InboundMessage,
    now: datetime,
) -> Message:
    message = Message(
        tenant_id=conversation.tenant_id,
        conversation_id=conversation.id,
        contact_id=conversation.contact_id,
        direction=DIRECTION_INBOUND,
        content=inbound.text,
        message_type=inbound.message_type,
        is_bot_response=False,
        status=MESSAGE_RECEIVED,
        whatsapp_message_id=inbound.message_id,
        created_at=now,
    )
    session.add(message)
    session.commit()
    return message


# ── Orchestration ────────────────────────────────────────────────────


def receive_message(
    session_factory: Callable[[], Session],
    engine: Any,
    tenant_param: str | None,
    inbound: InboundMessage,
    *,
    now: datetime | None = None,
) -> dict[str, str]:
    """Persist an inbound message and run one conversational turn.

    Returns the small status object the webhook answers with.  The message
    is stored before the engine runs, so it is kept even when the bot is
    off or the LLM fails.
    """
    now = now or utcnow()

    with session_factory() as session:
        tenant = resolve_tenant(session, tenant_param, inbound.phone_number_id)
        if tenant is None:
            logger.error(
                "No tenant found for webhook (tenant=%r, phone_number_id=%r)",
                tenant_param, inbound.phone_number_id,
            )
            return {"error": "tenant_not_found"}

        if is_duplicate_delivery(session, tenant.id, inbound.message_id):
            logger.info("Tenant %s: duplicate delivery of %s ignored", tenant.id, inbound.message_id)
            return {"status": "duplicate"}

        contact = upsert_contact(session, tenant.id, inbound.sender, inbound.profile_name, now)
        conversation = upsert_active_conversation(session, tenant.id, contact.id, inbound.text, now)
        try:
            message = record_inbound(session, conversation, inbound, now)
        except IntegrityError:
            # Concurrent redelivery stored it first
            session.rollback()
            logger.info("Tenant %s: duplicate delivery of %s ignored", tenant.id, inbound.message_id)
            return {"status": "duplicate"}

        turn = {
            "tenant_id": tenant.id,
            "contact_id": contact.id,
            "conversation_id": conversation.id,
            "inbound_message_id": message.id,
            "sender": inbound.sender,
            "text": inbound.text,
        }

    engine.invoke(turn)
    return {"status": "ok"}
