"""Chat-messaging adapter (WhatsApp Business Cloud API compatible).

Authenticates with a static bearer token. Messages that name a template
are sent as provider-side template messages; everything else is sent as
plain text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from notification_service.core.exceptions import ProviderError, ProviderNotConfiguredError
from notification_service.features.notifications.models import Channel
from notification_service.features.notifications.phone import normalize

from .base import (
    BaseProviderAdapter,
    DeliveryTarget,
    OutboundMessage,
    SendResult,
    StatusResult,
    raise_for_provider_response,
)

if TYPE_CHECKING:
    import httpx

    from notification_service.core.settings.providers import ChatSettings


def template_parameters(params: list[Any]) -> list[dict[str, Any]]:
    """Convert stored template params into body component parameters.

    Plain values become text parameters; dicts are passed through as-is.
    """
    return [p if isinstance(p, dict) else {"type": "text", "text": str(p)} for p in params]


class ChatAdapter(BaseProviderAdapter):
    """Chat channel adapter.

    Example:
        adapter = ChatAdapter(get_chat_settings(), country_code="237", client=client)
        await adapter.send(target, OutboundMessage(subject="", body="Hello"))
    """

    channel = Channel.CHAT
    provider_name = "whatsapp"

    def __init__(
        self,
        settings: ChatSettings,
        *,
        country_code: str,
        client: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._country_code = country_code
        self._client = client
        self._base_url = settings.api_url.rstrip("/")

    def destination_for(self, target: DeliveryTarget) -> str | None:
        return normalize(target.phone, self._country_code) or None

    async def _do_send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult:
        self._ensure_configured()

        msisdn = self.destination_for(target)
        if msisdn is None:
            raise ProviderError("Recipient has no phone number", self.provider_name)

        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": msisdn,
        }
        if message.template_name:
            payload["type"] = "template"
            payload["template"] = {
                "name": message.template_name,
                "language": {"code": self._settings.template_language},
                "components": [
                    {"type": "body", "parameters": template_parameters(message.template_params)}
                ],
            }
        else:
            payload["type"] = "text"
            payload["text"] = {"preview_url": False, "body": message.body}

        response = await self._client.post(
            f"{self._base_url}/{self._settings.phone_number_id}/messages",
            json=payload,
            headers=self._headers(),
        )
        raise_for_provider_response(self.provider_name, response)

        messages = response.json().get("messages") or []
        if not messages or not messages[0].get("id"):
            raise ProviderError(
                f"{self.provider_name} response carried no message id", self.provider_name
            )
        return SendResult.success_result(
            self.provider_name,
            messages[0]["id"],
            provider_status="sent",
            destination=msisdn,
        )

    async def _do_check_status(self, provider_message_id: str) -> StatusResult:
        self._ensure_configured()

        response = await self._client.get(
            f"{self._base_url}/{provider_message_id}",
            headers=self._headers(),
        )
        raise_for_provider_response(self.provider_name, response)
        return StatusResult(
            success=True,
            provider=self.provider_name,
            provider_status=response.json().get("status"),
        )

    def _headers(self) -> dict[str, str]:
        token = self._settings.api_key.get_secret_value() if self._settings.api_key else ""
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _ensure_configured(self) -> None:
        missing = []
        if not self._settings.api_key:
            missing.append("WHATSAPP_API_KEY")
        if not self._settings.phone_number_id:
            missing.append("WHATSAPP_PHONE_NUMBER_ID")
        if missing:
            raise ProviderNotConfiguredError(self.provider_name, missing)


__all__ = ["ChatAdapter", "template_parameters"]
