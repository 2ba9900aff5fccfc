"""Tests for directive parsing and execution."""

from __future__ import annotations

from datetime import date, time

import pytest
from sqlalchemy import select

from salon_bot.db.models import (
    APPOINTMENT_CANCELLED,
    BOOKED_BY_BOT,
    BOOKED_BY_MANUAL,
    Appointment,
    Contact,
)
from salon_bot.directives import (
    BOOKED_FALLBACK_TEXT,
    BOT_BOOKING_NOTES,
    OUTSIDE_HOURS_TEXT,
    SLOT_UNAVAILABLE_TEXT,
    THANKS_FALLBACK_TEXT,
    BookingDirective,
    apply_directives,
    match_service,
    parse_directives,
)


class TestParseDirectives:
    def test_strips_booking_tag(self):
        parsed = parse_directives("Perfeito, vou agendar! [AGENDAR:Corte|2026-03-15|14:00]")
        assert parsed.text == "Perfeito, vou agendar!"
        assert parsed.booking == BookingDirective("Corte", date(2026, 3, 15), time(14, 0))
        assert parsed.birth_date is None

    def test_birth_date_is_day_month_year(self):
        parsed = parse_directives("Anotado! [NASCIMENTO:05/09/1990]")
        assert parsed.birth_date == date(1990, 9, 5)
        assert parsed.text == "Anotado!"

    def test_both_directives_in_one_reply(self):
        parsed = parse_directives(
            "Tudo certo!\n[NASCIMENTO:01/02/1985]\n[AGENDAR:Barba|2099-01-05|10:00]"
        )
        assert parsed.text == "Tudo certo!"
        assert parsed.birth_date == date(1985, 2, 1)
        assert parsed.booking.service_name == "Barba"

    def test_only_first_booking_is_acted_on_but_all_are_stripped(self):
        parsed = parse_directives(
            "Ok [AGENDAR:Corte|2099-01-05|10:00] e [AGENDAR:Barba|2099-01-06|11:00]"
        )
        assert parsed.booking.service_name == "Corte"
        assert "AGENDAR" not in parsed.text

    def test_invalid_calendar_date_is_ignored_and_stripped(self):
        parsed = parse_directives("Certo [NASCIMENTO:31/02/1990]")
        assert parsed.birth_date is None
        assert parsed.text == "Certo"

    def test_invalid_booking_time_is_ignored(self):
        parsed = parse_directives("Certo [AGENDAR:Corte|2099-01-05|25:00]")
        assert parsed.booking is None
        assert parsed.text == "Certo"

    def test_plain_text_passes_through(self):
        parsed = parse_directives("  Olá! Como posso ajudar?  ")
        assert parsed.text == "Olá! Como posso ajudar?"
        assert parsed.booking is None
        assert parsed.birth_date is None

    def test_collapses_blank_lines_left_by_tags(self):
        parsed = parse_directives("Linha 1\n\n[NASCIMENTO:05/09/1990]\n\n\nLinha 2")
        assert parsed.text == "Linha 1\n\nLinha 2"


class TestMatchService:
    def test_case_insensitive_exact(self, make_tenant, make_service):
        tenant = make_tenant()
        corte = make_service(tenant, name="Corte Masculino")
        assert match_service([corte], "corte masculino") is corte
        assert match_service([corte], "  CORTE MASCULINO ") is corte

    def test_no_partial_match(self, make_tenant, make_service):
        tenant = make_tenant()
        corte = make_service(tenant, name="Corte Masculino")
        assert match_service([corte], "Corte") is None


class TestApplyDirectives:
    def _appointments(self, session):
        return list(session.scalars(select(Appointment)))

    def test_books_appointment_for_named_service(
        self, session, make_tenant, make_service, make_contact,
    ):
        # 2026-03-15 is a Sunday, so this tenant has no hours configured
        tenant = make_tenant(business_hours=None)
        corte = make_service(tenant, name="Corte")
        contact = make_contact(tenant)

        parsed = parse_directives("Perfeito, vou agendar! [AGENDAR:corte|2026-03-15|14:00]")
        result = apply_directives(session, tenant, contact, parsed, [corte])

        assert result.text == "Perfeito, vou agendar!"
        assert result.booking_rejected is False
        [appt] = self._appointments(session)
        assert appt.service_id == corte.id
        assert appt.contact_id == contact.id
        assert appt.appointment_date == date(2026, 3, 15)
        assert appt.appointment_time == time(14, 0)
        assert appt.status == "scheduled"
        assert appt.booked_by == BOOKED_BY_BOT
        assert appt.notes == BOT_BOOKING_NOTES

    def test_unknown_service_books_without_service(
        self, session, make_tenant, make_service, make_contact,
    ):
        tenant = make_tenant(business_hours=None)
        contact = make_contact(tenant)
        parsed = parse_directives("Ok! [AGENDAR:Massagem|2099-01-05|10:00]")

        result = apply_directives(session, tenant, contact, parsed, [make_service(tenant)])

        assert result.appointment is not None
        assert result.appointment.service_id is None

    def test_records_birth_date(self, session, make_tenant, make_contact):
        tenant = make_tenant()
        contact = make_contact(tenant)
        parsed = parse_directives("Obrigado! [NASCIMENTO:05/09/1990]")

        result = apply_directives(session, tenant, contact, parsed, [])

        assert result.birth_date_saved is True
        session.expire_all()
        assert session.get(Contact, contact.id).birth_date == date(1990, 9, 5)

    def test_taken_slot_is_rejected_with_apology(
        self, session, make_tenant, make_contact,
    ):
        tenant = make_tenant(business_hours=None)
        other = make_contact(tenant, phone="5511888880000", name="Maria")
        contact = make_contact(tenant)
        session.add(Appointment(
            tenant_id=tenant.id,
            contact_id=other.id,
            appointment_date=date(2099, 1, 5),
            appointment_time=time(14, 0),
            booked_by=BOOKED_BY_MANUAL,
        ))
        session.commit()

        parsed = parse_directives("Agendado! [AGENDAR:Corte|2099-01-05|14:00]")
        result = apply_directives(session, tenant, contact, parsed, [])

        assert result.booking_rejected is True
        assert result.appointment is None
        assert result.text.endswith(SLOT_UNAVAILABLE_TEXT)
        assert len(self._appointments(session)) == 1

    def test_cancelled_appointment_frees_the_slot(
        self, session, make_tenant, make_contact,
    ):
        tenant = make_tenant(business_hours=None)
        contact = make_contact(tenant)
        session.add(Appointment(
            tenant_id=tenant.id,
            contact_id=contact.id,
            appointment_date=date(2099, 1, 5),
            appointment_time=time(14, 0),
            status=APPOINTMENT_CANCELLED,
        ))
        session.commit()

        parsed = parse_directives("Ok [AGENDAR:Corte|2099-01-05|14:00]")
        result = apply_directives(session, tenant, contact, parsed, [])

        assert result.booking_rejected is False
        assert len(self._appointments(session)) == 2

    @pytest.mark.parametrize(
        "directive",
        [
            "[AGENDAR:Corte|2026-10-25|10:00]",  # Sunday, closed
            "[AGENDAR:Corte|2026-10-19|08:00]",  # before opening
            "[AGENDAR:Corte|2026-10-19|19:00]",  # at closing time
        ],
    )
    def test_outside_business_hours_is_rejected(
        self, session, make_tenant, make_contact, directive,
    ):
        tenant = make_tenant()
        contact = make_contact(tenant)

        result = apply_directives(session, tenant, contact, parse_directives(f"Ok {directive}"), [])

        assert result.booking_rejected is True
        assert result.text == f"Ok\n\n{OUTSIDE_HOURS_TEXT}"
        assert SLOT_UNAVAILABLE_TEXT not in result.text
        assert self._appointments(session) == []

    def test_birth_date_survives_rejected_booking(
        self, session, make_tenant, make_contact,
    ):
        tenant = make_tenant()
        contact = make_contact(tenant)
        parsed = parse_directives(
            "Ok [NASCIMENTO:05/09/1990] [AGENDAR:Corte|2026-10-25|10:00]"
        )

        result = apply_directives(session, tenant, contact, parsed, [])

        assert result.booking_rejected is True
        session.expire_all()
        assert session.get(Contact, contact.id).birth_date == date(1990, 9, 5)

    def test_empty_text_after_booking_gets_confirmation(
        self, session, make_tenant, make_contact,
    ):
        tenant = make_tenant(business_hours=None)
        contact = make_contact(tenant)

        result = apply_directives(
            session, tenant, contact, parse_directives("[AGENDAR:Corte|2099-01-05|10:00]"), [],
        )

        assert result.text == BOOKED_FALLBACK_TEXT

    def test_empty_text_after_birth_date_gets_thanks(
        self, session, make_tenant, make_contact,
    ):
        tenant = make_tenant()
        contact = make_contact(tenant)

        result = apply_directives(
            session, tenant, contact, parse_directives("[NASCIMENTO:05/09/1990]"), [],
        )

        assert result.text == THANKS_FALLBACK_TEXT
