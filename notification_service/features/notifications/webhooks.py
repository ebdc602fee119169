"""Provider delivery-status ingestion (callbacks and polling)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from notification_service.core.exceptions import ValidationException
from notification_service.features.notifications.metrics import (
    notification_webhook_events_total,
)
from notification_service.features.notifications.repository import (
    DeliveryAttemptRepository,
    get_delivery_attempt_repository,
)
from notification_service.features.notifications.state import apply_provider_status
from notification_service.features.notifications.tracking import parse_attempt_id

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.features.notifications.models import DeliveryAttempt
    from notification_service.features.notifications.providers.base import StatusResult
    from notification_service.features.notifications.providers.registry import AdapterRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StatusReport:
    """A provider's delivery report, correlated by attempt id or provider id."""

    status: str | None
    log_id: str | None = None
    message_id: str | None = None
    error: str | None = None


class WebhookIngestor:
    """Reconciles provider-reported delivery status onto attempts.

    Ingestion is idempotent: replaying a report leaves the attempt as the
    first application did. Unknown correlation ids are logged and ignored.
    """

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        repository: DeliveryAttemptRepository | None = None,
    ) -> None:
        self._registry = registry
        self._repository = repository or get_delivery_attempt_repository()

    async def ingest(self, session: AsyncSession, report: StatusReport) -> str:
        """Apply one report. Returns ``applied``, ``unchanged`` or ``unknown``."""
        attempt = await self._correlate(session, report)
        if attempt is None:
            notification_webhook_events_total.labels(outcome="unknown").inc()
            logger.warning(
                "Delivery report for unknown attempt ignored",
                extra={
                    "log_id": report.log_id,
                    "provider_message_id": report.message_id,
                    "provider_status": report.status,
                    "operation": "webhook.ingest",
                },
            )
            return "unknown"

        changed = apply_provider_status(attempt, report.status, error=report.error)
        outcome = "applied" if changed else "unchanged"
        notification_webhook_events_total.labels(outcome=outcome).inc()

        if changed:
            await session.flush()
        logger.info(
            "Delivery report processed",
            extra={
                "delivery_attempt_id": str(attempt.id),
                "provider_status": report.status,
                "status": attempt.status,
                "outcome": outcome,
                "operation": "webhook.ingest",
            },
        )
        return outcome

    async def refresh_status(
        self,
        session: AsyncSession,
        attempt_id: UUID,
    ) -> tuple[DeliveryAttempt, StatusResult]:
        """Poll the attempt's provider and reconcile like a callback.

        Raises:
            NotFoundError: The attempt does not exist.
            ValidationException: The attempt was never accepted by a provider.
        """
        attempt = await self._repository.get_or_raise(session, attempt_id)
        if not attempt.provider_message_id:
            raise ValidationException(
                "Attempt has no provider message id to poll",
                extra={"attempt_id": str(attempt_id)},
            )

        adapter = self._registry.resolve(attempt.channel, attempt.provider) if self._registry else None
        if adapter is None:
            raise ValidationException(
                f"No adapter available for channel {attempt.channel}",
                extra={"attempt_id": str(attempt_id)},
            )

        result = await adapter.check_status(attempt.provider_message_id)
        if result.success and apply_provider_status(attempt, result.provider_status):
            await session.flush()

        logger.info(
            "Provider status polled",
            extra={
                "delivery_attempt_id": str(attempt.id),
                "provider": adapter.provider_name,
                "provider_status": result.provider_status,
                "success": result.success,
                "operation": "webhook.refresh_status",
            },
        )
        return attempt, result

    async def _correlate(
        self,
        session: AsyncSession,
        report: StatusReport,
    ) -> DeliveryAttempt | None:
        attempt_id = parse_attempt_id(report.log_id)
        if attempt_id is not None:
            attempt = await self._repository.get(session, attempt_id)
            if attempt is not None:
                return attempt
        if report.message_id:
            return await self._repository.find_by_provider_message_id(session, report.message_id)
        return None


__all__ = ["StatusReport", "WebhookIngestor"]
