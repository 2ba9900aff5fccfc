"""Shared test fixtures for the salon bot test suite."""

from __future__ import annotations

import os
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("LLM_API_KEY", "test-llm-key-123")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.pop("OPERATOR_API_KEY", None)
    os.environ["METRICS_ENABLED"] = "false"


# Mon–Sat 09:00–19:00, Sunday closed
BUSINESS_HOURS = {
    "monday": {"isOpen": True, "start": "09:00", "end": "19:00"},
    "tuesday": {"isOpen": True, "start": "09:00", "end": "19:00"},
    "wednesday": {"isOpen": True, "start": "09:00", "end": "19:00"},
    "thursday": {"isOpen": True, "start": "09:00", "end": "19:00"},
    "friday": {"isOpen": True, "start": "09:00", "end": "19:00"},
    "saturday": {"isOpen": True, "start": "09:00", "end": "19:00"},
    "sunday": {"isOpen": False, "start": "09:00", "end": "13:00"},
}


@pytest.fixture
def business_hours():
    return BUSINESS_HOURS


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test, shared across threads."""
    from salon_bot.db.models import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def session(session_factory):
    with session_factory() as s:
        yield s


@pytest.fixture
def make_tenant(session):
    """Factory fixture: persist a bot-enabled tenant with sensible defaults."""
    from salon_bot.db.models import Tenant

    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "id": f"tenant-{n}",
            "company_name": "Barbearia do Zé",
            "address": "Rua das Flores, 10",
            "phone": "11 4000-0000",
            "email": None,
            "instagram": "@barbeariadoze",
            "business_hours": BUSINESS_HOURS,
            "timezone": "America/Sao_Paulo",
            "whatsapp_phone_number_id": f"PNID-{n}",
            "whatsapp_access_token": "wa-token",
            "whatsapp_verify_token": "verify-secret",
            "bot_enabled": True,
            "birthday_message_enabled": True,
        }
        fields.update(overrides)
        tenant = Tenant(**fields)
        session.add(tenant)
        session.commit()
        return tenant

    return _make


@pytest.fixture
def make_service(session):
    from salon_bot.db.models import Service

    def _make(tenant, name="Corte", price="35.00", duration=30, **overrides):
        service = Service(
            tenant_id=tenant.id,
            name=name,
            price=Decimal(price),
            duration=duration,
            **overrides,
        )
        session.add(service)
        session.commit()
        return service

    return _make


@pytest.fixture
def make_contact(session):
    from salon_bot.db.models import Contact

    def _make(tenant, phone="5511999990000", name="João", **overrides):
        contact = Contact(tenant_id=tenant.id, phone=phone, name=name, **overrides)
        session.add(contact)
        session.commit()
        return contact

    return _make


@pytest.fixture
def gateway():
    """Mock WhatsApp sender usable as a context manager."""
    mock = MagicMock()
    mock.__enter__.return_value = mock
    mock.__exit__.return_value = None
    mock.send_text.return_value = {"messages": [{"id": "wamid.TEST1"}]}
    return mock


@pytest.fixture
def gateway_factory(gateway):
    return MagicMock(return_value=gateway)

