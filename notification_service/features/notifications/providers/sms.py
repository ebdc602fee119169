"""SMS carrier adapter with injectable carrier profiles.

Both carriers share one adapter: OAuth client-credentials exchange through
the shared token cache, bearer-authenticated sends, and status polling.
What differs per carrier (endpoints, credentials, payload shapes) lives in
a ``CarrierProfile``.

Example:
    adapter = SmsCarrierAdapter(
        OrangeCarrierProfile(get_orange_sms_settings()),
        country_code="237",
        token_cache=cache,
        client=http_client,
    )
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from notification_service.core.exceptions import (
    ProviderError,
    ProviderNotConfiguredError,
    TokenExchangeError,
)
from notification_service.features.notifications.models import Channel
from notification_service.features.notifications.phone import normalize
from notification_service.features.notifications.tokens import TokenGrant

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

    from notification_service.core.settings.providers import MtnSmsSettings, OrangeSmsSettings
    from notification_service.features.notifications.tokens import ProviderTokenCache

DEFAULT_TOKEN_TTL_SECONDS = 3600.0


class CarrierProfile(ABC):
    """Carrier-specific endpoints, credentials and payload mapping."""

    name: str
    token_path: str

    @property
    @abstractmethod
    def base_url(self) -> str: ...

    @abstractmethod
    def missing_settings(self) -> list[str]:
        """Environment variables that must be set before the carrier can be used."""
        ...

    @abstractmethod
    def basic_credential(self) -> str:
        """Value sent as ``Authorization: Basic ...`` to the token endpoint."""
        ...

    @abstractmethod
    def send_request(self, msisdn: str, text: str) -> tuple[str, dict[str, Any]]:
        """URL and JSON body for sending ``text`` to the normalized ``msisdn``."""
        ...

    @abstractmethod
    def parse_send_response(self, data: dict[str, Any]) -> tuple[str | None, str | None]:
        """Extract ``(provider_message_id, provider_status)``."""
        ...

    @abstractmethod
    def status_url(self, provider_message_id: str) -> str: ...

    @abstractmethod
    def parse_status_response(self, data: dict[str, Any]) -> str | None: ...


class MtnCarrierProfile(CarrierProfile):
    """MTN gateway: pre-encoded basic key, flat JSON send body."""

    name = "mtn"
    token_path = "/oauth/token"

    def __init__(self, settings: MtnSmsSettings) -> None:
        self._settings = settings

    @property
    def base_url(self) -> str:
        return (self._settings.api_url or "").rstrip("/")

    def missing_settings(self) -> list[str]:
        missing = []
        if not self._settings.api_url:
            missing.append("MTN_SMS_API_URL")
        if not self._settings.api_key:
            missing.append("MTN_SMS_API_KEY")
        if not self._settings.sender_id:
            missing.append("MTN_SMS_SENDER_ID")
        return missing

    def basic_credential(self) -> str:
        return self._settings.api_key.get_secret_value() if self._settings.api_key else ""

    def send_request(self, msisdn: str, text: str) -> tuple[str, dict[str, Any]]:
        payload: dict[str, Any] = {
            "from": self._settings.sender_id,
            "to": f"+{msisdn}",
            "message": text,
        }
        if self._settings.callback_url:
            payload["callback_url"] = self._settings.callback_url
        return f"{self.base_url}/sms/send", payload

    def parse_send_response(self, data: dict[str, Any]) -> tuple[str | None, str | None]:
        message_id = data.get("message_id")
        return (str(message_id) if message_id else None), data.get("status")

    def status_url(self, provider_message_id: str) -> str:
        return f"{self.base_url}/sms/status/{provider_message_id}"

    def parse_status_response(self, data: dict[str, Any]) -> str | None:
        return data.get("status")


class OrangeCarrierProfile(CarrierProfile):
    """Orange SMS messaging API: client id/secret, ``tel:`` addressed requests."""

    name = "orange"
    token_path = "/oauth/v3/token"

    def __init__(self, settings: OrangeSmsSettings) -> None:
        self._settings = settings

    @property
    def base_url(self) -> str:
        return (self._settings.api_url or "").rstrip("/")

    def missing_settings(self) -> list[str]:
        missing = []
        if not self._settings.api_url:
            missing.append("ORANGE_SMS_API_URL")
        if not self._settings.client_id:
            missing.append("ORANGE_SMS_CLIENT_ID")
        if not self._settings.client_secret:
            missing.append("ORANGE_SMS_CLIENT_SECRET")
        if not self._settings.sender_id:
            missing.append("ORANGE_SMS_SENDER_ID")
        return missing

    def basic_credential(self) -> str:
        secret = self._settings.client_secret.get_secret_value() if self._settings.client_secret else ""
        raw = f"{self._settings.client_id}:{secret}".encode()
        return base64.b64encode(raw).decode("ascii")

    def send_request(self, msisdn: str, text: str) -> tuple[str, dict[str, Any]]:
        sender = f"tel:{self._settings.sender_id}"
        payload = {
            "outboundSMSMessageRequest": {
                "address": f"tel:{msisdn}",
                "senderAddress": sender,
                "outboundSMSTextMessage": {"message": text},
            }
        }
        return f"{self.base_url}/smsmessaging/v1/outbound/{sender}/requests", payload

    def parse_send_response(self, data: dict[str, Any]) -> tuple[str | None, str | None]:
        resource_url = (data.get("outboundSMSMessageRequest") or {}).get("resourceURL")
        if not resource_url:
            return None, None
        return resource_url.rstrip("/").rsplit("/", 1)[-1], "sent"

    def status_url(self, provider_message_id: str) -> str:
        return f"{self.base_url}/smsmessaging/v1/outbound/requests/{provider_message_id}/deliveryInfos"

    def parse_status_response(self, data: dict[str, Any]) -> str | None:
        infos = data.get("deliveryInfos") or []
        if not infos:
            return None
        return infos[0].get("deliveryStatus")


class SmsCarrierAdapter(BaseProviderAdapter):
    """SMS channel adapter for one carrier profile.

    The token exchanger is registered on the shared cache at construction,
    so concurrent sends during expiry trigger a single exchange.
    """

    channel = Channel.SMS

    def __init__(
        self,
        profile: CarrierProfile,
        *,
        country_code: str,
        token_cache: ProviderTokenCache,
        client: httpx.AsyncClient,
    ) -> None:
        self.profile = profile
        self.provider_name = profile.name
        self._country_code = country_code
        self._token_cache = token_cache
        self._client = client
        token_cache.register(profile.name, self._exchange_token)

    def destination_for(self, target: DeliveryTarget) -> str | None:
        return normalize(target.phone, self._country_code) or None

    async def _do_send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult:
        self._ensure_configured()

        msisdn = self.destination_for(target)
        if msisdn is None:
            raise ProviderError("Recipient has no phone number", self.provider_name)

        url, payload = self.profile.send_request(msisdn, message.body)
        response = await self._client.post(url, json=payload, headers=await self._auth_headers())
        self._check_response(response)

        message_id, status = self.profile.parse_send_response(self._json(response))
        if not message_id:
            raise ProviderError(
                f"{self.provider_name} response carried no message id", self.provider_name
            )
        return SendResult.success_result(
            self.provider_name,
            message_id,
            provider_status=status,
            destination=msisdn,
        )

    async def _do_check_status(self, provider_message_id: str) -> StatusResult:
        self._ensure_configured()

        response = await self._client.get(
            self.profile.status_url(provider_message_id),
            headers=await self._auth_headers(),
        )
        self._check_response(response)

        return StatusResult(
            success=True,
            provider=self.provider_name,
            provider_status=self.profile.parse_status_response(self._json(response)),
        )

    async def _exchange_token(self) -> TokenGrant:
        self._ensure_configured()

        response = await self._client.post(
            f"{self.profile.base_url}{self.profile.token_path}",
            data={"grant_type": "client_credentials"},
            headers={
                "Authorization": f"Basic {self.profile.basic_credential()}",
                "Accept": "application/json",
            },
        )
        if not response.is_success:
            raise TokenExchangeError(
                f"Failed to authenticate with {self.provider_name}: HTTP {response.status_code}",
                self.provider_name,
                extra={"status_code": response.status_code},
            )

        data = self._json(response)
        expires_in = data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
        return TokenGrant(access_token=data.get("access_token") or "", expires_in=float(expires_in))

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._token_cache.get_token(self.provider_name)
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _check_response(self, response: httpx.Response) -> None:
        if response.status_code == 401:
            # Token revoked or expired early; next call exchanges again
            self._token_cache.invalidate(self.provider_name)
        raise_for_provider_response(self.provider_name, response)

    def _ensure_configured(self) -> None:
        missing = self.profile.missing_settings()
        if missing:
            raise ProviderNotConfiguredError(self.provider_name, missing)

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.provider_name} returned a non-JSON response", self.provider_name
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.provider_name} returned an unexpected response", self.provider_name
            )
        return data


__all__ = [
    "CarrierProfile",
    "MtnCarrierProfile",
    "OrangeCarrierProfile",
    "SmsCarrierAdapter",
]
