"""FastAPI dependencies for the notifications feature.

Provides Annotated type aliases for clean dependency injection in route handlers.
The provider runtime lives on ``app.state.notifications`` (built in the
lifespan); tests override ``get_notification_runtime`` or the service
dependencies directly.

Example usage:
    from notification_service.features.notifications.dependencies import (
        OrchestratorDep,
        SessionDep,
    )

    @router.post("/resend/{attempt_id}")
    async def resend(attempt_id: UUID, session: SessionDep, orchestrator: OrchestratorDep):
        attempt = await orchestrator.resend(session, attempt_id)
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from notification_service.core.dependencies.database import SessionDep
from notification_service.features.notifications.repository import (
    DeliveryAttemptRepository,
    RecipientProfileRepository,
    get_delivery_attempt_repository,
    get_recipient_profile_repository,
)
from notification_service.features.notifications.runtime import NotificationRuntime
from notification_service.features.notifications.service import DispatchOrchestrator
from notification_service.features.notifications.sweep import ReminderSweep
from notification_service.features.notifications.tracking import EngagementTracker
from notification_service.features.notifications.webhooks import WebhookIngestor


def get_notification_runtime(request: Request) -> NotificationRuntime:
    """Provider runtime created by the application lifespan."""
    return request.app.state.notifications


RuntimeDep = Annotated[NotificationRuntime, Depends(get_notification_runtime)]


def get_orchestrator(runtime: RuntimeDep) -> DispatchOrchestrator:
    return runtime.orchestrator()


OrchestratorDep = Annotated[DispatchOrchestrator, Depends(get_orchestrator)]


def get_reminder_sweep(orchestrator: OrchestratorDep) -> ReminderSweep:
    return ReminderSweep(orchestrator)


ReminderSweepDep = Annotated[ReminderSweep, Depends(get_reminder_sweep)]


def get_webhook_ingestor(runtime: RuntimeDep) -> WebhookIngestor:
    return WebhookIngestor(runtime.registry)


WebhookIngestorDep = Annotated[WebhookIngestor, Depends(get_webhook_ingestor)]


def get_engagement_tracker() -> EngagementTracker:
    return EngagementTracker()


EngagementTrackerDep = Annotated[EngagementTracker, Depends(get_engagement_tracker)]

DeliveryAttemptRepositoryDep = Annotated[
    DeliveryAttemptRepository, Depends(get_delivery_attempt_repository)
]
RecipientProfileRepositoryDep = Annotated[
    RecipientProfileRepository, Depends(get_recipient_profile_repository)
]

__all__ = [
    "DeliveryAttemptRepositoryDep",
    "EngagementTrackerDep",
    "OrchestratorDep",
    "RecipientProfileRepositoryDep",
    "ReminderSweepDep",
    "RuntimeDep",
    "SessionDep",
    "WebhookIngestorDep",
    "get_engagement_tracker",
    "get_notification_runtime",
    "get_orchestrator",
    "get_reminder_sweep",
    "get_webhook_ingestor",
]
