"""Unit tests for the SMS carrier adapter and carrier profiles."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from notification_service.core.settings.providers import MtnSmsSettings, OrangeSmsSettings
from notification_service.features.notifications.providers import (
    DeliveryTarget,
    MtnCarrierProfile,
    OrangeCarrierProfile,
    OutboundMessage,
    SmsCarrierAdapter,
)
from notification_service.features.notifications.tokens import ProviderTokenCache

MTN_URL = "https://mtn.test"
ORANGE_URL = "https://orange.test"


class CarrierStub:
    """Records requests and answers them from a route table."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}

    def add(self, method: str, url: str, response: httpx.Response) -> None:
        self.routes[(method, url)] = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, str(request.url)))
        if response is None:
            return httpx.Response(404, text="no route")
        return response

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


@pytest.fixture
def stub() -> CarrierStub:
    return CarrierStub()


@pytest.fixture
async def http_client(stub: CarrierStub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub)) as client:
        yield client


@pytest.fixture
def token_cache() -> ProviderTokenCache:
    return ProviderTokenCache(safety_margin=60.0)


@pytest.fixture
def mtn_adapter(http_client, token_cache) -> SmsCarrierAdapter:
    settings = MtnSmsSettings(api_url=MTN_URL, api_key="bXRuOmtleQ==", sender_id="SCHOOL")
    return SmsCarrierAdapter(
        MtnCarrierProfile(settings),
        country_code="237",
        token_cache=token_cache,
        client=http_client,
    )


@pytest.fixture
def orange_adapter(http_client, token_cache) -> SmsCarrierAdapter:
    settings = OrangeSmsSettings(
        api_url=ORANGE_URL,
        client_id="client",
        client_secret="secret",
        sender_id="2370000",
    )
    return SmsCarrierAdapter(
        OrangeCarrierProfile(settings),
        country_code="237",
        token_cache=token_cache,
        client=http_client,
    )


TARGET = DeliveryTarget(recipient_ref="guardian-1", phone="0671234567")
MESSAGE = OutboundMessage(subject="", body="Your child was absent today.")


def _token_response(token: str = "tok-1") -> httpx.Response:
    return httpx.Response(200, json={"access_token": token, "expires_in": 3600})


# ──────────────────────────────────────────────────────────────
# MTN
# ──────────────────────────────────────────────────────────────


class TestMtnCarrier:
    """Tests for the MTN carrier profile."""

    async def test_send_success(self, mtn_adapter, stub):
        stub.add("POST", f"{MTN_URL}/oauth/token", _token_response())
        stub.add(
            "POST",
            f"{MTN_URL}/sms/send",
            httpx.Response(200, json={"message_id": "mtn-123", "status": "queued"}),
        )

        result = await mtn_adapter.send(TARGET, MESSAGE)

        assert result.success is True
        assert result.provider == "mtn"
        assert result.provider_message_id == "mtn-123"
        assert result.destination == "237671234567"

        send = stub.calls_to(f"{MTN_URL}/sms/send")[0]
        assert send.headers["Authorization"] == "Bearer tok-1"
        assert json.loads(send.content) == {
            "from": "SCHOOL",
            "to": "+237671234567",
            "message": "Your child was absent today.",
        }

        token = stub.calls_to(f"{MTN_URL}/oauth/token")[0]
        assert token.headers["Authorization"] == "Basic bXRuOmtleQ=="
        assert b"grant_type=client_credentials" in token.content

    async def test_token_reused_across_sends(self, mtn_adapter, stub):
        stub.add("POST", f"{MTN_URL}/oauth/token", _token_response())
        stub.add(
            "POST",
            f"{MTN_URL}/sms/send",
            httpx.Response(200, json={"message_id": "mtn-1", "status": "queued"}),
        )

        await mtn_adapter.send(TARGET, MESSAGE)
        await mtn_adapter.send(TARGET, MESSAGE)

        assert len(stub.calls_to(f"{MTN_URL}/oauth/token")) == 1
        assert len(stub.calls_to(f"{MTN_URL}/sms/send")) == 2

    async def test_provider_error_text_is_kept(self, mtn_adapter, stub):
        stub.add("POST", f"{MTN_URL}/oauth/token", _token_response())
        stub.add("POST", f"{MTN_URL}/sms/send", httpx.Response(400, text="invalid number"))

        result = await mtn_adapter.send(TARGET, MESSAGE)

        assert result.success is False
        assert "invalid number" in result.error
        assert result.error_category == "provider"
        assert result.retryable is False
        assert result.destination == "237671234567"

    async def test_server_error_is_retryable(self, mtn_adapter, stub):
        stub.add("POST", f"{MTN_URL}/oauth/token", _token_response())
        stub.add("POST", f"{MTN_URL}/sms/send", httpx.Response(503, text="maintenance"))

        result = await mtn_adapter.send(TARGET, MESSAGE)

        assert result.success is False
        assert result.retryable is True
        assert result.error_category == "network"

    async def test_unauthorized_invalidates_token(self, mtn_adapter, stub, token_cache):
        stub.add("POST", f"{MTN_URL}/oauth/token", _token_response())
        stub.add("POST", f"{MTN_URL}/sms/send", httpx.Response(401, text="token expired"))

        result = await mtn_adapter.send(TARGET, MESSAGE)

        assert result.success is False
        assert token_cache.is_fresh("mtn") is False

    async def test_token_failure_is_auth_error(self, mtn_adapter, stub):
        stub.add("POST", f"{MTN_URL}/oauth/token", httpx.Response(401, text="bad key"))

        result = await mtn_adapter.send(TARGET, MESSAGE)

        assert result.success is False
        assert result.error_category == "auth"
        assert stub.calls_to(f"{MTN_URL}/sms/send") == []

    async def test_missing_phone(self, mtn_adapter, stub):
        stub.add("POST", f"{MTN_URL}/oauth/token", _token_response())

        result = await mtn_adapter.send(DeliveryTarget(recipient_ref="guardian-1"), MESSAGE)

        assert result.success is False
        assert result.error == "Recipient has no phone number"

    async def test_check_status(self, mtn_adapter, stub):
        stub.add("POST", f"{MTN_URL}/oauth/token", _token_response())
        stub.add(
            "GET",
            f"{MTN_URL}/sms/status/mtn-123",
            httpx.Response(200, json={"status": "delivered"}),
        )

        status = await mtn_adapter.check_status("mtn-123")

        assert status.success is True
        assert status.provider_status == "delivered"

    async def test_not_configured(self, http_client, token_cache, stub):
        adapter = SmsCarrierAdapter(
            MtnCarrierProfile(MtnSmsSettings(api_url=None, api_key=None, sender_id=None)),
            country_code="237",
            token_cache=token_cache,
            client=http_client,
        )

        result = await adapter.send(TARGET, MESSAGE)

        assert result.success is False
        assert result.error_category == "configuration"
        assert "MTN_SMS_API_KEY" in result.error
        assert stub.requests == []


# ──────────────────────────────────────────────────────────────
# Orange
# ──────────────────────────────────────────────────────────────


class TestOrangeCarrier:
    """Tests for the Orange carrier profile."""

    SEND_URL = f"{ORANGE_URL}/smsmessaging/v1/outbound/tel:2370000/requests"

    async def test_send_success(self, orange_adapter, stub):
        stub.add("POST", f"{ORANGE_URL}/oauth/v3/token", _token_response("orange-tok"))
        stub.add(
            "POST",
            self.SEND_URL,
            httpx.Response(
                201,
                json={
                    "outboundSMSMessageRequest": {
                        "resourceURL": f"{ORANGE_URL}/smsmessaging/v1/outbound/requests/req-77"
                    }
                },
            ),
        )

        result = await orange_adapter.send(TARGET, MESSAGE)

        assert result.success is True
        assert result.provider == "orange"
        assert result.provider_message_id == "req-77"
        assert result.provider_status == "sent"

        token = stub.calls_to(f"{ORANGE_URL}/oauth/v3/token")[0]
        expected = base64.b64encode(b"client:secret").decode("ascii")
        assert token.headers["Authorization"] == f"Basic {expected}"

        body = json.loads(stub.calls_to(self.SEND_URL)[0].content)
        request = body["outboundSMSMessageRequest"]
        assert request["address"] == "tel:237671234567"
        assert request["senderAddress"] == "tel:2370000"
        assert request["outboundSMSTextMessage"]["message"] == MESSAGE.body

    async def test_check_status_reads_delivery_infos(self, orange_adapter, stub):
        stub.add("POST", f"{ORANGE_URL}/oauth/v3/token", _token_response())
        stub.add(
            "GET",
            f"{ORANGE_URL}/smsmessaging/v1/outbound/requests/req-77/deliveryInfos",
            httpx.Response(
                200, json={"deliveryInfos": [{"deliveryStatus": "DeliveredToTerminal"}]}
            ),
        )

        status = await orange_adapter.check_status("req-77")

        assert status.provider_status == "DeliveredToTerminal"

    async def test_missing_resource_url_is_error(self, orange_adapter, stub):
        stub.add("POST", f"{ORANGE_URL}/oauth/v3/token", _token_response())
        stub.add("POST", self.SEND_URL, httpx.Response(201, json={}))

        result = await orange_adapter.send(TARGET, MESSAGE)

        assert result.success is False
        assert "no message id" in result.error


async def test_carriers_share_cache_but_not_tokens(mtn_adapter, orange_adapter, stub, token_cache):
    stub.add("POST", f"{MTN_URL}/oauth/token", _token_response("mtn-tok"))
    stub.add("POST", f"{ORANGE_URL}/oauth/v3/token", _token_response("orange-tok"))

    assert await token_cache.get_token("mtn") == "mtn-tok"
    assert await token_cache.get_token("orange") == "orange-tok"
