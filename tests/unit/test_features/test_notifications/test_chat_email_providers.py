"""Unit tests for the chat, email and in-app adapters and the registry."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import aiosmtplib
import httpx
import pytest

from notification_service.core.settings.providers import ChatSettings, EmailSettings
from notification_service.features.notifications.models import Channel
from notification_service.features.notifications.providers import (
    AdapterRegistry,
    ChatAdapter,
    DeliveryTarget,
    InAppAdapter,
    OutboundMessage,
    SmtpEmailAdapter,
)
from notification_service.features.notifications.providers.chat import template_parameters
from notification_service.features.notifications.providers.email import inject_tracking_pixel

CHAT_URL = "https://graph.chat.test/v19.0"

# ──────────────────────────────────────────────────────────────
# Chat
# ──────────────────────────────────────────────────────────────


@pytest.fixture
def chat_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
async def chat_adapter(chat_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        chat_requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"id": "wamid.1", "status": "read"})
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

    settings = ChatSettings(api_url=CHAT_URL, api_key="chat-token", phone_number_id="1055")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield ChatAdapter(settings, country_code="237", client=client)


class TestChatAdapter:
    """Tests for ChatAdapter."""

    async def test_sends_plain_text(self, chat_adapter, chat_requests):
        result = await chat_adapter.send(
            DeliveryTarget(recipient_ref="guardian-1", phone="671234567"),
            OutboundMessage(subject="", body="School closes at noon"),
        )

        assert result.success is True
        assert result.provider == "whatsapp"
        assert result.provider_message_id == "wamid.1"

        request = chat_requests[0]
        assert str(request.url) == f"{CHAT_URL}/1055/messages"
        assert request.headers["Authorization"] == "Bearer chat-token"
        body = json.loads(request.content)
        assert body["to"] == "237671234567"
        assert body["type"] == "text"
        assert body["text"]["body"] == "School closes at noon"

    async def test_sends_template(self, chat_adapter, chat_requests):
        await chat_adapter.send(
            DeliveryTarget(recipient_ref="guardian-1", phone="671234567"),
            OutboundMessage(
                subject="",
                body="",
                template_name="absence_alert",
                template_params=["Amina", "2025-01-10"],
            ),
        )

        body = json.loads(chat_requests[0].content)
        assert body["type"] == "template"
        assert body["template"]["name"] == "absence_alert"
        parameters = body["template"]["components"][0]["parameters"]
        assert parameters == [
            {"type": "text", "text": "Amina"},
            {"type": "text", "text": "2025-01-10"},
        ]

    async def test_check_status(self, chat_adapter):
        status = await chat_adapter.check_status("wamid.1")

        assert status.success is True
        assert status.provider_status == "read"

    async def test_not_configured(self, chat_requests):
        async with httpx.AsyncClient() as client:
            adapter = ChatAdapter(
                ChatSettings(api_url=CHAT_URL, api_key=None, phone_number_id=None),
                country_code="237",
                client=client,
            )
            result = await adapter.send(
                DeliveryTarget(recipient_ref="guardian-1", phone="671234567"),
                OutboundMessage(subject="", body="hi"),
            )

        assert result.success is False
        assert result.error_category == "configuration"
        assert "WHATSAPP_API_KEY" in result.error
        assert "WHATSAPP_PHONE_NUMBER_ID" in result.error


def test_template_parameters_pass_dicts_through():
    currency = {"type": "currency", "currency": {"code": "XAF", "amount_1000": 5000}}

    assert template_parameters([currency, 3]) == [currency, {"type": "text", "text": "3"}]


# ──────────────────────────────────────────────────────────────
# Email
# ──────────────────────────────────────────────────────────────


@pytest.fixture
def email_settings() -> EmailSettings:
    return EmailSettings(
        host="smtp.school.test",
        port=587,
        user="mailer",
        password="secret",
        from_address="noreply@school.test",
        from_name="Greenfield School",
    )


class TestSmtpEmailAdapter:
    """Tests for SmtpEmailAdapter."""

    async def test_send_uses_message_id(self, email_settings):
        adapter = SmtpEmailAdapter(email_settings, timeout=5.0)

        with patch("aiosmtplib.send", new=AsyncMock(return_value=({}, "OK"))) as send:
            result = await adapter.send(
                DeliveryTarget(recipient_ref="guardian-1", email=" parent@example.com "),
                OutboundMessage(subject="Absence", body="Amina was absent."),
            )

        assert result.success is True
        assert result.provider == "smtp"
        assert result.destination == "parent@example.com"

        mime = send.await_args.args[0]
        assert mime["Message-ID"].strip("<>") == result.provider_message_id
        assert mime["Subject"] == "Absence"
        kwargs = send.await_args.kwargs
        assert kwargs["hostname"] == "smtp.school.test"
        assert kwargs["username"] == "mailer"
        assert kwargs["password"] == "secret"
        assert kwargs["start_tls"] is True

    async def test_injects_tracking_pixel(self, email_settings):
        adapter = SmtpEmailAdapter(email_settings, tracking_base_url="https://notify.school.test")

        with patch("aiosmtplib.send", new=AsyncMock(return_value=({}, "OK"))) as send:
            await adapter.send(
                DeliveryTarget(recipient_ref="guardian-1", email="parent@example.com"),
                OutboundMessage(
                    subject="Report card",
                    body="Report card attached",
                    html_body="<html><body><p>Report card</p></body></html>",
                    attempt_id="0190a1b2-0000-7000-8000-000000000001",
                ),
            )

        mime = send.await_args.args[0]
        html = mime.get_body(preferencelist=("html",)).get_content()
        assert "0190a1b2-0000-7000-8000-000000000001" in html
        assert html.index("<img") < html.index("</body>")

    async def test_missing_host_is_configuration_error(self):
        adapter = SmtpEmailAdapter(EmailSettings(host=None))

        result = await adapter.send(
            DeliveryTarget(recipient_ref="guardian-1", email="parent@example.com"),
            OutboundMessage(subject="s", body="b"),
        )

        assert result.success is False
        assert result.error_category == "configuration"
        assert "EMAIL_HOST" in result.error

    async def test_missing_address(self, email_settings):
        adapter = SmtpEmailAdapter(email_settings)

        result = await adapter.send(
            DeliveryTarget(recipient_ref="guardian-1", email="  "),
            OutboundMessage(subject="s", body="b"),
        )

        assert result.success is False
        assert result.error == "Recipient has no email address"

    async def test_refused_recipient(self, email_settings):
        adapter = SmtpEmailAdapter(email_settings)
        refusal = ({"parent@example.com": (550, "mailbox unavailable")}, "OK")

        with patch("aiosmtplib.send", new=AsyncMock(return_value=refusal)):
            result = await adapter.send(
                DeliveryTarget(recipient_ref="guardian-1", email="parent@example.com"),
                OutboundMessage(subject="s", body="b"),
            )

        assert result.success is False
        assert "mailbox unavailable" in result.error
        assert result.retryable is False

    async def test_connection_failure_is_retryable(self, email_settings):
        adapter = SmtpEmailAdapter(email_settings)
        error = aiosmtplib.SMTPConnectError("connection refused")

        with patch("aiosmtplib.send", new=AsyncMock(side_effect=error)):
            result = await adapter.send(
                DeliveryTarget(recipient_ref="guardian-1", email="parent@example.com"),
                OutboundMessage(subject="s", body="b"),
            )

        assert result.success is False
        assert result.retryable is True
        assert result.error_category == "network"


def test_inject_tracking_pixel_without_body_tag():
    html = inject_tracking_pixel("<p>Hello</p>", "https://t.test/px")

    assert html.startswith("<p>Hello</p><img")
    assert 'src="https://t.test/px"' in html


# ──────────────────────────────────────────────────────────────
# In-app and registry
# ──────────────────────────────────────────────────────────────


async def test_in_app_always_succeeds():
    result = await InAppAdapter().send(
        DeliveryTarget(recipient_ref="guardian-1"), OutboundMessage(subject="s", body="b")
    )

    assert result.success is True
    assert result.provider_message_id is None
    assert result.destination == "guardian-1"


class TestAdapterRegistry:
    """Tests for AdapterRegistry resolution."""

    def test_channel_default(self, registry, adapters):
        assert registry.for_channel(Channel.SMS) is adapters["mtn"]
        assert registry.for_channel("email") is adapters["smtp"]

    def test_resolve_prefers_recorded_provider(self, registry, adapters):
        assert registry.resolve(Channel.SMS, "orange") is adapters["orange"]

    def test_resolve_falls_back_to_channel_default(self, registry, adapters):
        assert registry.resolve(Channel.SMS, None) is adapters["mtn"]
        assert registry.resolve(Channel.SMS, "unknown") is adapters["mtn"]
        # Provider from another channel is ignored
        assert registry.resolve(Channel.SMS, "smtp") is adapters["mtn"]

    def test_missing_channel(self, adapters):
        registry = AdapterRegistry([adapters["smtp"]])

        assert registry.for_channel(Channel.CHAT) is None

    def test_providers_sorted(self, registry):
        assert registry.providers == ["in_app", "mtn", "orange", "smtp", "whatsapp"]
