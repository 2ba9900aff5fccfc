"""Daily birthday greetings over WhatsApp.

Meant to be triggered by a scheduler (cron → ``POST /api/jobs/birthdays``
or ``salon-bot birthdays``).  Safe to run several times a day: the
``whatsapp_birthday_logs`` row per (tenant, contact, year) is the
idempotency guard, backed by a unique constraint and written before the
send, so overlapping runs greet each contact once.

Failures are isolated per contact; one bad phone number never stops the
rest of the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salon_bot.db.models import (
    DIRECTION_OUTBOUND,
    MESSAGE_SENT,
    BirthdayLog,
    Contact,
    Message,
    Tenant,
    utcnow,
)
from salon_bot.services.availability import is_within_business_hours, local_now
from salon_bot.services.inbox import find_active_conversation, touch_conversation
from salon_bot.services.whatsapp_client import WhatsAppClient, message_id_from

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = (
    "🎂 Feliz Aniversário, {nome}! 🎉\n\n"
    "A equipe {empresa} deseja um dia incrível para você! ❤️"
)
DEFAULT_CONTACT_NAME = "Cliente"
DEFAULT_COMPANY_NAME = "nossa empresa"


def render_birthday_message(template: str | None, contact_name: str | None, company_name: str | None) -> str:
    """Substitute ``{nome}`` and ``{empresa}``; other braces are left alone."""
    return (
        (template or DEFAULT_TEMPLATE)
        .replace("{nome}", contact_name or DEFAULT_CONTACT_NAME)
        .replace("{empresa}", company_name or DEFAULT_COMPANY_NAME)
    )


def _already_sent(session: Session, tenant_id: str, contact_id: str, year: int) -> bool:
    return session.scalars(
        select(BirthdayLog.id).where(
            BirthdayLog.tenant_id == tenant_id,
            BirthdayLog.contact_id == contact_id,
            BirthdayLog.year == year,
        )
    ).first() is not None


def birthday_contacts(session: Session, tenant_id: str, today) -> list[Contact]:
    """Contacts whose birth month/day is *today*'s, ignoring the year."""
    contacts = session.scalars(
        select(Contact).where(Contact.tenant_id == tenant_id, Contact.birth_date.is_not(None))
    )
    return [
        c for c in contacts
        if c.birth_date.month == today.month and c.birth_date.day == today.day
    ]


def _greet(session: Session, tenant: Tenant, contact: Contact, gateway: Any, year: int) -> bool:
    """Claim the (tenant, contact, year) log row, then send.

    The log row is committed before the send so overlapping runs can't
    both greet the same contact.  A failed send releases the claim and the
    next run retries.  Returns True when a message went out.
    """
    if _already_sent(session, tenant.id, contact.id, year):
        logger.info("Tenant %s: birthday already sent to %s for %d", tenant.id, contact.id, year)
        return False

    log = BirthdayLog(tenant_id=tenant.id, contact_id=contact.id, year=year)
    session.add(log)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.info(
            "Tenant %s: birthday for %s/%d claimed by another run", tenant.id, contact.id, year,
        )
        return False

    text = render_birthday_message(
        tenant.birthday_message_template, contact.name, tenant.company_name,
    )
    try:
        response = gateway.send_text(contact.phone, text)
    except Exception:
        session.delete(log)
        session.commit()
        raise

    conversation = find_active_conversation(session, tenant.id, contact.id)
    if conversation is not None:
        now = utcnow()
        session.add(Message(
            tenant_id=tenant.id,
            conversation_id=conversation.id,
            contact_id=contact.id,
            direction=DIRECTION_OUTBOUND,
            content=text,
            message_type="text",
            is_bot_response=True,
            status=MESSAGE_SENT,
            whatsapp_message_id=message_id_from(response),
            created_at=now,
        ))
        session.commit()
        touch_conversation(session, conversation.id, text, now)

    logger.info("Tenant %s: birthday greeting sent to %s", tenant.id, contact.id)
    return True


def _run_for_tenant(
    session: Session,
    tenant: Tenant,
    gateway_factory: Callable[[Tenant], Any],
    now: datetime | None,
) -> int:
    local = local_now(tenant, now)
    if not is_within_business_hours(tenant.business_hours, local):
        logger.info("Tenant %s outside business hours, skipping birthdays", tenant.id)
        return 0

    contacts = birthday_contacts(session, tenant.id, local.date())
    if not contacts:
        return 0

    sent = 0
    with gateway_factory(tenant) as gateway:
        for contact in contacts:
            try:
                if _greet(session, tenant, contact, gateway, local.year):
                    sent += 1
            except Exception:
                session.rollback()
                logger.exception(
                    "Tenant %s: failed to send birthday greeting to %s", tenant.id, contact.id,
                )
    return sent


def run_birthday_job(
    session_factory: Callable[[], Session],
    gateway_factory: Callable[[Tenant], Any] = WhatsAppClient.for_tenant,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Greet every contact whose birthday is today, once per year.

    Args:
        session_factory: Returns a new SQLAlchemy session.
        gateway_factory: Builds a sender for a tenant (context manager with
            ``send_text``).
        now: Override the current instant (tests); converted to each
            tenant's local time.

    Returns:
        ``{"status": "ok", "sent": <count>}``
    """
    with session_factory() as session:
        tenants = list(
            session.scalars(select(Tenant).where(Tenant.birthday_message_enabled.is_(True)))
        )
        if not tenants:
            return {"status": "no_tenants_with_birthday_enabled", "sent": 0}

        total = 0
        for tenant in tenants:
            if not tenant.has_gateway_credentials:
                continue
            try:
                total += _run_for_tenant(session, tenant, gateway_factory, now)
            except Exception:
                session.rollback()
                logger.exception("Tenant %s: birthday run failed", tenant.id)

    logger.info("Birthday check complete. Sent %d messages.", total)
    return {"status": "ok", "sent": total}
