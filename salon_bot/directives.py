"""Directives embedded by the LLM in its free-text replies.

The model is instructed (see ``prompts.py``) to signal side effects with
bracketed tags that the customer must never see::

    [AGENDAR:<service name>|<YYYY-MM-DD>|<HH:MM>]   → create an appointment
    [NASCIMENTO:<DD>/<MM>/<YYYY>]                   → record the birth date

Parsing is permissive: both tags are optional and independent, only the
first occurrence of each kind is acted on, and every occurrence is removed
from the text sent to the customer.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salon_bot.db.models import (
    APPOINTMENT_SCHEDULED,
    BOOKED_BY_BOT,
    Appointment,
    Contact,
    Service,
    Tenant,
)
from salon_bot.services.availability import is_slot_open

logger = logging.getLogger(__name__)

BIRTH_DATE_RE = re.compile(r"\[NASCIMENTO:(\d{2})/(\d{2})/(\d{4})\]")
BOOKING_RE = re.compile(r"\[AGENDAR:([^|]+)\|(\d{4}-\d{2}-\d{2})\|(\d{2}:\d{2})\]")

BOT_BOOKING_NOTES = "Agendado pelo bot do WhatsApp"
SLOT_UNAVAILABLE_TEXT = (
    "Desculpe, esse horário acabou de ficar indisponível. "
    "Pode escolher outro horário?"
)
OUTSIDE_HOURS_TEXT = (
    "Desculpe, esse horário está fora do horário de funcionamento. "
    "Pode escolher outro horário?"
)
BOOKED_FALLBACK_TEXT = "Pronto! Seu agendamento foi registrado. ✅"
THANKS_FALLBACK_TEXT = "Obrigado! 😊"


@dataclass(frozen=True)
class BookingDirective:
    service_name: str
    day: date
    at: time


@dataclass(frozen=True)
class ParsedReply:
    text: str
    birth_date: date | None = None
    booking: BookingDirective | None = None


@dataclass
class ExecutionResult:
    text: str
    appointment: Appointment | None = None
    birth_date_saved: bool = False
    booking_rejected: bool = False


def _clean(text: str) -> str:
    text = BIRTH_DATE_RE.sub("", text)
    text = BOOKING_RE.sub("", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _parse_birth_date(match: re.Match | None) -> date | None:
    if match is None:
        return None
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        logger.warning("Ignoring invalid birth date directive %r", match.group(0))
        return None


def _parse_booking(match: re.Match | None) -> BookingDirective | None:
    if match is None:
        return None
    name, day_str, time_str = match.groups()
    try:
        day = date.fromisoformat(day_str)
        at = time.fromisoformat(time_str)
    except ValueError:
        logger.warning("Ignoring invalid booking directive %r", match.group(0))
        return None
    return BookingDirective(service_name=name.strip(), day=day, at=at)


def parse_directives(raw: str) -> ParsedReply:
    """Extract directives from *raw* and return the customer-facing text."""
    return ParsedReply(
        text=_clean(raw),
        birth_date=_parse_birth_date(BIRTH_DATE_RE.search(raw)),
        booking=_parse_booking(BOOKING_RE.search(raw)),
    )


def match_service(services: Sequence[Service], name: str) -> Service | None:
    """Case-insensitive exact match on the service name.  No fuzzy matching."""
    wanted = name.strip().casefold()
    for service in services:
        if service.name and service.name.strip().casefold() == wanted:
            return service
    return None


def _book(
    session: Session,
    tenant: Tenant,
    contact: Contact,
    booking: BookingDirective,
    services: Sequence[Service],
) -> Appointment | None:
    """Insert the appointment, or return ``None`` if the slot is already taken."""
    service = match_service(services, booking.service_name)
    if service is None:
        logger.info(
            "Tenant %s: no service named %r, booking without service",
            tenant.id, booking.service_name,
        )

    appointment = Appointment(
        tenant_id=tenant.id,
        contact_id=contact.id,
        service_id=service.id if service else None,
        appointment_date=booking.day,
        appointment_time=booking.at,
        status=APPOINTMENT_SCHEDULED,
        booked_by=BOOKED_BY_BOT,
        notes=BOT_BOOKING_NOTES,
    )
    session.add(appointment)
    try:
        session.commit()
    except IntegrityError:
        # Another booking took the slot after the prompt was compiled
        session.rollback()
        logger.warning(
            "Tenant %s: slot %s %s already taken, bot booking rejected",
            tenant.id, booking.day, booking.at,
        )
        return None

    logger.info(
        "Tenant %s: bot booked %s %s for contact %s (service=%s)",
        tenant.id, booking.day, booking.at, contact.id,
        service.name if service else None,
    )
    return appointment


def apply_directives(
    session: Session,
    tenant: Tenant,
    contact: Contact,
    parsed: ParsedReply,
    services: Sequence[Service],
) -> ExecutionResult:
    """Execute the side effects requested by *parsed*.

    The birth date is committed before the booking is attempted so a
    rejected slot never loses it.
    """
    result = ExecutionResult(text=parsed.text)

    if parsed.birth_date is not None:
        contact.birth_date = parsed.birth_date
        session.commit()
        result.birth_date_saved = True
        logger.info("Contact %s: birth date recorded", contact.id)

    if parsed.booking is not None:
        booking = parsed.booking
        if not is_slot_open(tenant.business_hours, booking.day, booking.at):
            logger.warning(
                "Tenant %s: rejected bot booking outside business hours (%s %s)",
                tenant.id, booking.day, booking.at,
            )
            result.booking_rejected = True
            result.text = f"{result.text}\n\n{OUTSIDE_HOURS_TEXT}".strip()
        else:
            result.appointment = _book(session, tenant, contact, booking, services)
            if result.appointment is None:
                result.booking_rejected = True
                result.text = f"{result.text}\n\n{SLOT_UNAVAILABLE_TEXT}".strip()

    if not result.text:
        result.text = BOOKED_FALLBACK_TEXT if result.appointment else THANKS_FALLBACK_TEXT

    return result
