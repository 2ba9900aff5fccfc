"""SQLAlchemy models for the WhatsApp booking bot.

Table names mirror the ``whatsapp_*`` tables the dashboard reads.  The
uniqueness rules the bot depends on are real database indexes:

- one contact per (tenant, phone)
- one *active* conversation per (tenant, contact)  — partial index
- one non-cancelled appointment per (tenant, date, time) — partial index
- one birthday log per (tenant, contact, year)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# ── Enumerations (stored as plain strings) ──────────────────────────
CONVERSATION_ACTIVE = "active"
CONVERSATION_ARCHIVED = "archived"

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"

MESSAGE_RECEIVED = "received"
MESSAGE_SENT = "sent"
MESSAGE_FAILED = "failed"

APPOINTMENT_SCHEDULED = "scheduled"
APPOINTMENT_CONFIRMED = "confirmed"
APPOINTMENT_COMPLETED = "completed"
APPOINTMENT_CANCELLED = "cancelled"

BOOKED_BY_BOT = "bot"
BOOKED_BY_MANUAL = "manual"


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class Tenant(Base):
    __tablename__ = "whatsapp_tenants"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_name = Column(String, nullable=False)
    address = Column(String)
    phone = Column(String)
    email = Column(String)
    instagram = Column(String)
    # {"monday": {"isOpen": true, "start": "08:00", "end": "18:00"}, ...}
    business_hours = Column(JSON)
    timezone = Column(String)

    whatsapp_phone_number_id = Column(String, unique=True, index=True)
    whatsapp_access_token = Column(Text)
    whatsapp_business_account_id = Column(String)
    whatsapp_verify_token = Column(String)

    bot_enabled = Column(Boolean, nullable=False, default=False)
    birthday_message_enabled = Column(Boolean, nullable=False, default=True)
    birthday_message_template = Column(Text)

    @property
    def has_gateway_credentials(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)


class Contact(Base):
    __tablename__ = "whatsapp_contacts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_contact_tenant_phone"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("whatsapp_tenants.id"), nullable=False, index=True)
    phone = Column(String, nullable=False)
    name = Column(String)
    birth_date = Column(Date)
    notes = Column(Text)
    last_message_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Conversation(Base):
    __tablename__ = "whatsapp_conversations"
    __table_args__ = (
        Index(
            "uq_conversation_active_contact",
            "tenant_id",
            "contact_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("whatsapp_tenants.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("whatsapp_contacts.id"), nullable=False)
    status = Column(String, nullable=False, default=CONVERSATION_ACTIVE)
    last_message_preview = Column(String)
    last_message_at = Column(DateTime(timezone=True))
    unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    contact = relationship("Contact")


class Message(Base):
    __tablename__ = "whatsapp_messages"
    __table_args__ = (
        # A redelivered webhook can't store the same inbound message twice
        Index(
            "uq_message_inbound_wa_id",
            "tenant_id",
            "whatsapp_message_id",
            unique=True,
            sqlite_where=text("direction = 'inbound' AND whatsapp_message_id IS NOT NULL"),
            postgresql_where=text("direction = 'inbound' AND whatsapp_message_id IS NOT NULL"),
        ),
    )

    # Autoincrement id doubles as the replay order within a conversation
    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(36), ForeignKey("whatsapp_tenants.id"), nullable=False, index=True)
    conversation_id = Column(
        String(36), ForeignKey("whatsapp_conversations.id"), nullable=False, index=True,
    )
    contact_id = Column(String(36), ForeignKey("whatsapp_contacts.id"), nullable=False)
    direction = Column(String, nullable=False)
    content = Column(Text)
    message_type = Column(String, nullable=False, default="text")
    is_bot_response = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False)
    whatsapp_message_id = Column(String, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Service(Base):
    __tablename__ = "whatsapp_services"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("whatsapp_tenants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    duration = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)


class Appointment(Base):
    __tablename__ = "whatsapp_appointments"
    __table_args__ = (
        Index(
            "uq_appointment_slot",
            "tenant_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("whatsapp_tenants.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("whatsapp_contacts.id"), nullable=False)
    service_id = Column(String(36), ForeignKey("whatsapp_services.id"))
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=APPOINTMENT_SCHEDULED)
    booked_by = Column(String, nullable=False, default=BOOKED_BY_MANUAL)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    service = relationship("Service")


class BirthdayLog(Base):
    __tablename__ = "whatsapp_birthday_logs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "contact_id", "year", name="uq_birthday_log_year"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("whatsapp_tenants.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("whatsapp_contacts.id"), nullable=False)
    year = Column(Integer, nullable=False)
    sent_at = Column(DateTime(timezone=True), default=utcnow)
