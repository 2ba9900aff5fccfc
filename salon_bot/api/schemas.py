"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "salon-bot"


class WebhookAck(BaseModel):
    """What the webhook answers to the gateway (always with HTTP 200)."""

    status: str | None = None
    error: str | None = None


class OperatorMessageRequest(BaseModel):
    """A message typed by a human operator in the dashboard."""

    message: str = Field(..., min_length=1, max_length=4096, description="Text to send")


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    direction: str
    content: str | None
    message_type: str
    is_bot_response: bool
    status: str
    whatsapp_message_id: str | None = None
    created_at: datetime | None = None


class OperatorSendResponse(BaseModel):
    status: str
    whatsapp_message_id: str | None = None


class BirthdayJobResponse(BaseModel):
    status: str
    sent: int = 0
