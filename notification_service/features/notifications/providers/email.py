"""SMTP email adapter using aiosmtplib.

Supports STARTTLS (port 587), implicit TLS (port 465) and authenticated
relays. When a tracking base URL is configured, HTML bodies get the
open-tracking pixel for the attempt appended.
"""

from __future__ import annotations

from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import TYPE_CHECKING

import aiosmtplib

from notification_service.core.exceptions import (
    ProviderError,
    ProviderNotConfiguredError,
    TransientNetworkError,
)
from notification_service.features.notifications.models import Channel
from notification_service.features.notifications.tracking import build_open_url

from .base import BaseProviderAdapter, DeliveryTarget, OutboundMessage, SendResult

if TYPE_CHECKING:
    from notification_service.core.settings.providers import EmailSettings


class SmtpEmailAdapter(BaseProviderAdapter):
    """Email channel over SMTP.

    The generated ``Message-ID`` (without angle brackets) is the provider
    message id.

    Example:
        adapter = SmtpEmailAdapter(get_email_settings(), timeout=15.0)
        result = await adapter.send(
            DeliveryTarget("guardian-42", email="parent@example.com"),
            OutboundMessage(subject="Absence", body="..."),
        )
    """

    channel = Channel.EMAIL
    provider_name = "smtp"

    def __init__(
        self,
        settings: EmailSettings,
        *,
        timeout: float = 15.0,
        tracking_base_url: str | None = None,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._tracking_base_url = tracking_base_url

    def destination_for(self, target: DeliveryTarget) -> str | None:
        return target.email.strip() if target.email and target.email.strip() else None

    async def _do_send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult:
        if not self._settings.host:
            raise ProviderNotConfiguredError(self.provider_name, ["EMAIL_HOST"])

        destination = self.destination_for(target)
        if destination is None:
            raise ProviderError("Recipient has no email address", self.provider_name)

        mime = self._build_message(destination, target, message)
        message_id = mime["Message-ID"].strip("<>")
        password = self._settings.password.get_secret_value() if self._settings.password else None

        try:
            errors, _response = await aiosmtplib.send(
                mime,
                hostname=self._settings.host,
                port=self._settings.port,
                username=self._settings.user,
                password=password,
                use_tls=self._settings.use_tls,
                start_tls=self._settings.start_tls and not self._settings.use_tls,
                timeout=self._timeout,
            )
        except (
            aiosmtplib.SMTPTimeoutError,
            aiosmtplib.SMTPConnectError,
            aiosmtplib.SMTPServerDisconnected,
        ) as exc:
            raise TransientNetworkError(f"SMTP transport error: {exc}", self.provider_name) from exc
        except aiosmtplib.SMTPRecipientsRefused as exc:
            raise ProviderError(f"Recipient refused: {exc}", self.provider_name) from exc
        except aiosmtplib.SMTPException as exc:
            raise ProviderError(f"SMTP error: {exc}", self.provider_name) from exc

        if errors and destination in errors:
            raise ProviderError(
                f"Recipient refused: {errors[destination]}", self.provider_name
            )

        return SendResult.success_result(
            self.provider_name,
            message_id,
            provider_status="accepted",
            destination=destination,
        )

    def _build_message(
        self,
        destination: str,
        target: DeliveryTarget,
        message: OutboundMessage,
    ) -> EmailMessage:
        mime = EmailMessage()
        sender_domain = self._settings.from_address.rpartition("@")[2] or None
        mime["Message-ID"] = make_msgid(domain=sender_domain)
        mime["Subject"] = message.subject
        mime["From"] = formataddr((self._settings.from_name or "", self._settings.from_address))
        mime["To"] = formataddr((target.display_name or "", destination))
        mime.set_content(message.body)

        html = message.html_body
        if html and message.attempt_id and self._tracking_base_url:
            html = inject_tracking_pixel(
                html, build_open_url(self._tracking_base_url, message.attempt_id)
            )
        if html:
            mime.add_alternative(html, subtype="html")
        return mime


def inject_tracking_pixel(html: str, pixel_url: str) -> str:
    """Insert a 1x1 tracking image before ``</body>``, or append it."""
    tag = f'<img src="{pixel_url}" width="1" height="1" alt="" style="display:none" />'
    index = html.lower().rfind("</body>")
    if index == -1:
        return html + tag
    return html[:index] + tag + html[index:]


__all__ = ["SmtpEmailAdapter", "inject_tracking_pixel"]
