"""Availability snapshot: occupied slots and business-hours rules.

Business hours are stored per tenant as a JSON object keyed by English
weekday name::

    {"monday": {"isOpen": true, "start": "08:00", "end": "18:00"}, ...}

A tenant with no business hours configured is treated as always open; a
weekday missing from the table is treated as closed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from salon_bot.config import DEFAULT_TIMEZONE
from salon_bot.db.models import APPOINTMENT_CANCELLED, Appointment, Tenant

logger = logging.getLogger(__name__)

# Python's date.weekday() order: Monday == 0
WEEKDAY_KEYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

Slot = tuple[date, time]


def tenant_timezone(tenant: Tenant) -> ZoneInfo:
    """Return the tenant's timezone, falling back to the configured default."""
    name = tenant.timezone or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for tenant %s, using %s", name, tenant.id, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_now(tenant: Tenant, now: datetime | None = None) -> datetime:
    """Current (or given) instant expressed in the tenant's local time."""
    tz = tenant_timezone(tenant)
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def day_schedule(business_hours: dict[str, Any] | None, day: date) -> dict[str, Any] | None:
    """Return the ``{isOpen, start, end}`` entry for *day*'s weekday."""
    if not business_hours:
        return None
    return business_hours.get(WEEKDAY_KEYS[day.weekday()])


def _hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def is_slot_open(business_hours: dict[str, Any] | None, day: date, at: time) -> bool:
    """Whether an appointment may start at *at* on *day*.

    The start must fall in ``[start, end)`` of an open weekday.
    """
    if not business_hours:
        return True
    schedule = day_schedule(business_hours, day)
    if not schedule or not schedule.get("isOpen"):
        return False
    start, end = schedule.get("start"), schedule.get("end")
    if not start or not end:
        return False
    return start <= _hhmm(at) < end


def is_within_business_hours(business_hours: dict[str, Any] | None, now: datetime) -> bool:
    """Whether *now* (tenant-local) falls inside that weekday's opening hours.

    Both bounds are inclusive.  Closed days always return ``False``.
    """
    if not business_hours:
        return True
    schedule = day_schedule(business_hours, now.date())
    if not schedule or not schedule.get("isOpen"):
        return False
    current = _hhmm(now.time())
    return schedule.get("start", "00:00") <= current <= schedule.get("end", "23:59")


def occupied_slots(session: Session, tenant_id: str, today: date) -> list[Slot]:
    """List (date, time) pairs already taken by non-cancelled appointments.

    Scoped to the tenant only: this product has no per-professional
    calendar, so any booking blocks the slot for everyone.
    """
    rows = session.execute(
        select(Appointment.appointment_date, Appointment.appointment_time)
        .where(
            Appointment.tenant_id == tenant_id,
            Appointment.appointment_date >= today,
            Appointment.status != APPOINTMENT_CANCELLED,
        )
        .order_by(Appointment.appointment_date, Appointment.appointment_time)
    ).all()
    return [(row[0], row[1]) for row in rows]
