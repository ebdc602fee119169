"""In-app channel adapter.

In-app notifications are read from the delivery log by the client
applications, so "sending" only records the attempt.
"""

from __future__ import annotations

from notification_service.features.notifications.models import Channel

from .base import BaseProviderAdapter, DeliveryTarget, OutboundMessage, SendResult, StatusResult


class InAppAdapter(BaseProviderAdapter):
    """Always succeeds; there is no provider message id."""

    channel = Channel.IN_APP
    provider_name = "in_app"

    def destination_for(self, target: DeliveryTarget) -> str | None:
        return target.recipient_ref

    async def _do_send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult:
        return SendResult.success_result(
            self.provider_name,
            None,
            provider_status="stored",
            destination=target.recipient_ref,
        )

    async def _do_check_status(self, provider_message_id: str) -> StatusResult:
        return StatusResult(success=True, provider=self.provider_name, provider_status="stored")


__all__ = ["InAppAdapter"]
