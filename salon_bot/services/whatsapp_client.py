"""HTTP client for the WhatsApp Cloud API (Meta Graph API).

Docs: https://developers.facebook.com/docs/whatsapp/cloud-api/reference/messages
Every tenant has its own phone-number id and access token, so a client is
built per tenant per unit of work rather than shared globally.

No retries: a failed send is logged by the caller and the customer's next
message re-triggers a full turn anyway.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from salon_bot.config import REQUEST_TIMEOUT_SECONDS, WHATSAPP_GRAPH_URL
from salon_bot.db.models import Tenant
from salon_bot.services.metrics import metrics

logger = logging.getLogger(__name__)


class WhatsAppAPIError(Exception):
    """Raised when a WhatsApp Cloud API call fails (transport or non-2xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def message_id_from(response: dict[str, Any] | None) -> str | None:
    """Pull ``messages[0].id`` out of a send response, if present."""
    messages = (response or {}).get("messages") or []
    if messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return None


class WhatsAppClient:
    """Thin wrapper around ``POST /{phone_number_id}/messages``."""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        base_url: str | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self._phone_number_id = phone_number_id
        self._client = httpx.Client(
            base_url=base_url or WHATSAPP_GRAPH_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    @classmethod
    def for_tenant(cls, tenant: Tenant) -> WhatsAppClient:
        return cls(tenant.whatsapp_phone_number_id, tenant.whatsapp_access_token)

    # ── Context manager ──────────────────────────────────────────────

    def __enter__(self) -> WhatsAppClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ── Public API ───────────────────────────────────────────────────

    def send_text(self, to: str, body: str) -> dict[str, Any]:
        """Send a plain text message to *to* (E.164 digits, no ``+``).

        Returns:
            The Graph API response, e.g.
            ``{"messages": [{"id": "wamid.…"}], ...}``.

        Raises:
            WhatsAppAPIError: on timeouts, connection errors and non-2xx
                responses.
        """
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        path = f"/{self._phone_number_id}/messages"

        with metrics.track("whatsapp", "POST /messages"):
            try:
                response = self._client.post(path, json=payload)
            except httpx.HTTPError as exc:
                raise WhatsAppAPIError(
                    f"WhatsApp send failed ({type(exc).__name__}): {exc}",
                ) from exc

            if response.status_code >= 400:
                raise WhatsAppAPIError(
                    f"WhatsApp API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

        try:
            data = response.json()
        except ValueError:
            data = {}
        logger.debug("WhatsApp send to %s accepted: %s", to, data)
        return data


class ConsoleGateway:
    """Stand-in gateway for the developer CLI: prints instead of sending."""

    def __init__(self, label: str = "Bot"):
        self._label = label
        self._counter = 0

    def __enter__(self) -> ConsoleGateway:
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def close(self) -> None:
        return None

    def send_text(self, to: str, body: str) -> dict[str, Any]:
        self._counter += 1
        print(f"\n{self._label} → {to}: {body}\n")
        return {"messages": [{"id": f"console-{self._counter}"}]}
