"""Tests for the WhatsApp Cloud API client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from salon_bot.db.models import Tenant
from salon_bot.services.whatsapp_client import (
    ConsoleGateway,
    WhatsAppAPIError,
    WhatsAppClient,
    message_id_from,
)

# ── Helpers ──────────────────────────────────────────────────────────


def _mock_response(data: dict | None, status_code: int = 200) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    if data is None:
        mock.json.side_effect = ValueError("no json")
    else:
        mock.json.return_value = data
    mock.text = str(data)
    return mock


# ── Tests: send_text ─────────────────────────────────────────────────


class TestSendText:
    def test_posts_text_payload_to_phone_number(self):
        client = WhatsAppClient("PNID-1", "wa-token")
        data = {"messages": [{"id": "wamid.ABC"}]}

        with patch.object(client._client, "post", return_value=_mock_response(data)) as mock_post:
            result = client.send_text("5511999990000", "Olá!")

        assert result == data
        path = mock_post.call_args[0][0]
        payload = mock_post.call_args[1]["json"]
        assert path == "/PNID-1/messages"
        assert payload == {
            "messaging_product": "whatsapp",
            "to": "5511999990000",
            "type": "text",
            "text": {"body": "Olá!"},
        }

    def test_sets_bearer_token_and_graph_url(self):
        client = WhatsAppClient("PNID-1", "wa-token")
        assert client._client.headers["Authorization"] == "Bearer wa-token"
        assert str(client._client.base_url).startswith("https://graph.facebook.com/v21.0")

    def test_error_status_raises(self):
        client = WhatsAppClient("PNID-1", "wa-token")
        bad = _mock_response({"error": {"message": "Invalid token"}}, status_code=401)

        with patch.object(client._client, "post", return_value=bad):
            with pytest.raises(WhatsAppAPIError) as exc_info:
                client.send_text("5511999990000", "Olá!")

        assert exc_info.value.status_code == 401
        assert "401" in str(exc_info.value)

    def test_transport_error_raises(self):
        client = WhatsAppClient("PNID-1", "wa-token")

        with patch.object(client._client, "post", side_effect=httpx.ConnectTimeout("timed out")):
            with pytest.raises(WhatsAppAPIError) as exc_info:
                client.send_text("5511999990000", "Olá!")

        assert exc_info.value.status_code is None
        assert "ConnectTimeout" in str(exc_info.value)

    def test_non_json_success_body_returns_empty_dict(self):
        client = WhatsAppClient("PNID-1", "wa-token")

        with patch.object(client._client, "post", return_value=_mock_response(None)):
            assert client.send_text("5511999990000", "Olá!") == {}

    def test_records_metrics(self):
        client = WhatsAppClient("PNID-1", "wa-token")

        with patch("salon_bot.services.whatsapp_client.metrics") as mock_metrics, \
             patch.object(client._client, "post", return_value=_mock_response({})):
            client.send_text("5511999990000", "Olá!")

        mock_metrics.track.assert_called_once_with("whatsapp", "POST /messages")


class TestForTenant:
    def test_uses_tenant_credentials(self):
        tenant = Tenant(
            id="t1", company_name="X",
            whatsapp_phone_number_id="PNID-9", whatsapp_access_token="tok-9",
        )
        with WhatsAppClient.for_tenant(tenant) as client:
            assert client._phone_number_id == "PNID-9"
            assert client._client.headers["Authorization"] == "Bearer tok-9"


class TestMessageIdFrom:
    def test_extracts_first_id(self):
        assert message_id_from({"messages": [{"id": "wamid.1"}, {"id": "wamid.2"}]}) == "wamid.1"

    def test_missing(self):
        assert message_id_from({}) is None
        assert message_id_from(None) is None
        assert message_id_from({"messages": []}) is None


class TestConsoleGateway:
    def test_prints_and_returns_fake_ids(self, capsys):
        with ConsoleGateway() as gateway:
            first = gateway.send_text("5511999990000", "Oi!")
            second = gateway.send_text("5511999990000", "Tchau!")

        assert message_id_from(first) == "console-1"
        assert message_id_from(second) == "console-2"
        assert "Oi!" in capsys.readouterr().out
