"""API router for the notifications feature.

Dispatch Endpoints:
- POST /notifications/send - Send a message to one recipient
- POST /notifications/send-bulk - Send a message to many recipients
- POST /notifications/resend/{attempt_id} - Re-send a delivery attempt
- POST /notifications/remind/{recipient_id}/{message_id} - Ad hoc reminder

Recipient Endpoints:
- PUT /notifications/recipients/{recipient_ref} - Upsert a recipient profile
- GET /notifications/recipients/{recipient_ref} - Get a recipient profile

Attempt Endpoints:
- GET /notifications/attempts - Search delivery attempts
- GET /notifications/attempts/{attempt_id} - Get a delivery attempt
- POST /notifications/attempts/{attempt_id}/refresh-status - Poll the provider

Provider and Browser Endpoints (never fail visibly):
- POST /notifications/sms-webhook - Carrier delivery reports
- GET /notifications/track/open - Open-tracking pixel
- GET /notifications/track/click - Click-tracking redirect

Reporting:
- GET /notifications/analytics - Engagement and delivery counts
"""

from __future__ import annotations

import logging
from typing import Annotated, Any
from urllib.parse import urlsplit
from uuid import UUID

from fastapi import APIRouter, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from notification_service.core.exceptions import NotFoundException, ValidationException
from notification_service.features.notifications.analytics import compute_analytics
from notification_service.features.notifications.dependencies import (
    DeliveryAttemptRepositoryDep,
    EngagementTrackerDep,
    OrchestratorDep,
    RecipientProfileRepositoryDep,
    ReminderSweepDep,
    SessionDep,
    WebhookIngestorDep,
)
from notification_service.features.notifications.models import (
    Channel,
    DeliveryStatus,
)
from notification_service.features.notifications.schemas import (
    AnalyticsResponse,
    DeliveryAttemptListResponse,
    DeliveryAttemptResponse,
    RecipientOutcomeResponse,
    RecipientProfileResponse,
    RecipientProfileUpsert,
    ReminderResponse,
    ResendResponse,
    SendBulkRequest,
    SendBulkResponse,
    SendNotificationRequest,
    SendResponse,
    SmsWebhookPayload,
    StatusRefreshResponse,
    WebhookAck,
)
from notification_service.features.notifications.service import (
    ComposedMessage,
    Recipient,
    RecipientOutcome,
)
from notification_service.features.notifications.tracking import PIXEL_PNG
from notification_service.features.notifications.webhooks import StatusReport
from notification_service.infra.logging import get_lazy_logger

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

_NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate, max-age=0"}


def _composed(payload: SendNotificationRequest | SendBulkRequest) -> ComposedMessage:
    return ComposedMessage(
        subject=payload.subject,
        body=payload.body,
        html_body=payload.html_body,
        template_name=payload.template_name,
        template_params=list(payload.template_params),
    )


def _outcome_response(outcome: RecipientOutcome) -> RecipientOutcomeResponse:
    return RecipientOutcomeResponse(
        recipient_ref=outcome.recipient_ref,
        skipped=outcome.skipped,
        reason=outcome.reason,
        attempts=[DeliveryAttemptResponse.model_validate(a) for a in outcome.attempts],
    )


# ============================================================================
# Dispatch
# ============================================================================


@router.post(
    "/send",
    response_model=SendResponse,
    summary="Send a notification to one recipient",
    description="""
Route the message to every channel the recipient enabled for the category and
send through each channel's provider. Provider failures are recorded on the
attempt (`status=failed`) and do not fail the request.
""",
    responses={404: {"description": "Recipient not found"}},
)
async def send_notification(
    payload: SendNotificationRequest,
    session: SessionDep,
    orchestrator: OrchestratorDep,
    profiles: RecipientProfileRepositoryDep,
) -> SendResponse:
    """Send a composed message to one recipient."""
    profile = await profiles.get_by_ref(session, payload.recipient_ref)
    if profile is None:
        raise NotFoundException(
            f"Recipient {payload.recipient_ref} not found",
            type="recipient-not-found",
            extra={"recipient_ref": payload.recipient_ref},
        )

    recipient = Recipient.from_profile(profile, subject_ref=payload.subject_ref)
    outcomes = await orchestrator.send_bulk(
        session,
        [recipient],
        payload.category,
        _composed(payload),
        message_ref=payload.message_ref,
    )
    await session.commit()

    outcome = outcomes[0]
    message_ref = outcome.attempts[0].message_ref if outcome.attempts else payload.message_ref
    return SendResponse(message_ref=message_ref or "", outcome=_outcome_response(outcome))


@router.post(
    "/send-bulk",
    response_model=SendBulkResponse,
    summary="Send a notification to many recipients",
    description="""
Dispatch one message to a list of recipients. Each recipient gets its own
outcome; unknown recipients and recipients with no enabled channel are
reported as `skipped`. The batch never fails because of one recipient.
""",
)
async def send_bulk(
    payload: SendBulkRequest,
    session: SessionDep,
    orchestrator: OrchestratorDep,
    profiles: RecipientProfileRepositoryDep,
) -> SendBulkResponse:
    """Send a composed message to many recipients."""
    known = await profiles.list_by_refs(session, payload.recipient_refs)

    recipients: list[Recipient] = []
    unknown: dict[str, RecipientOutcome] = {}
    for ref in payload.recipient_refs:
        if ref in known:
            recipients.append(Recipient.from_profile(known[ref]))
        elif ref not in unknown:
            unknown[ref] = RecipientOutcome(
                recipient_ref=ref, skipped=True, reason="Unknown recipient"
            )

    message_ref = payload.message_ref
    dispatched = await orchestrator.send_bulk(
        session,
        recipients,
        payload.category,
        _composed(payload),
        message_ref=message_ref,
    )
    await session.commit()

    if message_ref is None:
        message_ref = next(
            (o.attempts[0].message_ref for o in dispatched if o.attempts),
            "",
        )

    by_ref = {o.recipient_ref: o for o in dispatched}
    by_ref.update(unknown)
    ordered = [by_ref[ref] for ref in dict.fromkeys(payload.recipient_refs)]

    if unknown:
        lazy_logger.info(
            lambda: f"Bulk send skipped unknown recipients: {sorted(unknown)}",
        )

    return SendBulkResponse(
        message_ref=message_ref,
        outcomes=[_outcome_response(o) for o in ordered],
        dispatched=sum(1 for o in ordered if not o.skipped),
        skipped=sum(1 for o in ordered if o.skipped),
        failed_attempts=sum(o.failed_count for o in ordered),
    )


@router.post(
    "/resend/{attempt_id}",
    response_model=ResendResponse,
    summary="Re-send a delivery attempt",
    description="""
Re-invoke the attempt's channel and provider. `attempt_count` increases by
exactly one. When the send fails on a timeout or connection error the response
carries `retryable: true`; nothing is retried automatically.
""",
    responses={404: {"description": "Delivery attempt not found"}},
)
async def resend_attempt(
    attempt_id: UUID,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> ResendResponse:
    """Re-send one delivery attempt."""
    attempt = await orchestrator.resend(session, attempt_id)
    await session.commit()

    retryable = attempt.status == DeliveryStatus.FAILED.value and attempt.last_error_retryable
    return ResendResponse(
        attempt=DeliveryAttemptResponse.model_validate(attempt),
        retryable=retryable,
    )


@router.post(
    "/remind/{recipient_id}/{message_id}",
    response_model=ReminderResponse,
    summary="Send an ad hoc reminder",
    responses={404: {"description": "Recipient or message not found"}},
)
async def remind_recipient(
    recipient_id: str,
    message_id: str,
    session: SessionDep,
    sweep: ReminderSweepDep,
) -> ReminderResponse:
    """Send a reminder for one message outside the scheduled sweep."""
    attempts = await sweep.remind(session, recipient_id, message_id)
    await session.commit()

    return ReminderResponse(
        recipient_ref=recipient_id,
        message_ref=message_id,
        attempts=[DeliveryAttemptResponse.model_validate(a) for a in attempts],
    )


# ============================================================================
# Recipient profiles
# ============================================================================


@router.put(
    "/recipients/{recipient_ref}",
    response_model=RecipientProfileResponse,
    summary="Create or update a recipient profile",
)
async def upsert_recipient(
    recipient_ref: str,
    payload: RecipientProfileUpsert,
    session: SessionDep,
    response: Response,
    profiles: RecipientProfileRepositoryDep,
) -> RecipientProfileResponse:
    """Upsert contact points and channel/category opt-ins."""
    fields: dict[str, Any] = payload.model_dump()
    if fields.get("email") is not None:
        fields["email"] = str(fields["email"])

    profile, created = await profiles.upsert(session, recipient_ref, fields)
    await session.commit()
    await session.refresh(profile)

    if created:
        response.status_code = status.HTTP_201_CREATED
    return RecipientProfileResponse.model_validate(profile)


@router.get(
    "/recipients/{recipient_ref}",
    response_model=RecipientProfileResponse,
    summary="Get a recipient profile",
    responses={404: {"description": "Recipient not found"}},
)
async def get_recipient(
    recipient_ref: str,
    session: SessionDep,
    profiles: RecipientProfileRepositoryDep,
) -> RecipientProfileResponse:
    profile = await profiles.get_by_ref(session, recipient_ref)
    if profile is None:
        raise NotFoundException(
            f"Recipient {recipient_ref} not found",
            type="recipient-not-found",
            extra={"recipient_ref": recipient_ref},
        )
    return RecipientProfileResponse.model_validate(profile)


# ============================================================================
# Delivery attempts
# ============================================================================


@router.get(
    "/attempts",
    response_model=DeliveryAttemptListResponse,
    summary="Search delivery attempts",
)
async def list_attempts(
    session: SessionDep,
    repo: DeliveryAttemptRepositoryDep,
    recipient_ref: Annotated[
        str | None,
        Query(alias="recipientRef", description="Filter by recipient"),
    ] = None,
    message_ref: Annotated[
        str | None,
        Query(alias="messageId", description="Filter by logical message"),
    ] = None,
    group_ref: Annotated[
        str | None,
        Query(alias="recipientGroupId", description="Filter by recipient group"),
    ] = None,
    channel: Annotated[Channel | None, Query(description="Filter by channel")] = None,
    status_filter: Annotated[
        DeliveryStatus | None,
        Query(alias="status", description="Filter by status"),
    ] = None,
    limit: Annotated[int, Query(ge=1, le=200, description="Maximum results")] = 50,
    offset: Annotated[int, Query(ge=0, description="Pagination offset")] = 0,
) -> DeliveryAttemptListResponse:
    result = await repo.search_attempts(
        session,
        recipient_ref=recipient_ref,
        message_ref=message_ref,
        group_ref=group_ref,
        channel=channel,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return DeliveryAttemptListResponse(
        items=[DeliveryAttemptResponse.model_validate(a) for a in result.items],
        total=result.total,
        limit=result.limit,
        offset=result.offset,
        has_next=result.has_next,
    )


@router.get(
    "/attempts/{attempt_id}",
    response_model=DeliveryAttemptResponse,
    summary="Get a delivery attempt",
    responses={404: {"description": "Delivery attempt not found"}},
)
async def get_attempt(
    attempt_id: UUID,
    session: SessionDep,
    repo: DeliveryAttemptRepositoryDep,
) -> DeliveryAttemptResponse:
    attempt = await repo.get_or_raise(session, attempt_id)
    return DeliveryAttemptResponse.model_validate(attempt)


@router.post(
    "/attempts/{attempt_id}/refresh-status",
    response_model=StatusRefreshResponse,
    summary="Poll the provider for delivery status",
    description="""
Ask the attempt's provider for its current delivery status and reconcile it
exactly like a delivery report callback.
""",
    responses={
        400: {"description": "Attempt has no provider message id"},
        404: {"description": "Delivery attempt not found"},
    },
)
async def refresh_attempt_status(
    attempt_id: UUID,
    session: SessionDep,
    ingestor: WebhookIngestorDep,
) -> StatusRefreshResponse:
    attempt, result = await ingestor.refresh_status(session, attempt_id)
    await session.commit()

    return StatusRefreshResponse(
        attempt=DeliveryAttemptResponse.model_validate(attempt),
        provider_status=result.provider_status,
        success=result.success,
        error=result.error,
    )


# ============================================================================
# Provider callbacks and tracking
# ============================================================================


@router.post(
    "/sms-webhook",
    response_model=WebhookAck,
    summary="Carrier delivery report callback",
    description="""
Accepts `{logId, status, ...}` (or `messageId` for provider-side ids). Always
answers 200 `{"status": "ok"}`, including for unknown ids and malformed
bodies, so carriers never retry a report.
""",
)
async def sms_webhook(
    request: Request,
    session: SessionDep,
    ingestor: WebhookIngestorDep,
) -> WebhookAck:
    try:
        payload = SmsWebhookPayload.model_validate(await request.json())
    except (ValueError, ValidationError):
        logger.warning(
            "Malformed delivery report ignored",
            extra={"operation": "webhook.ingest"},
        )
        return WebhookAck()

    report = StatusReport(
        status=payload.status,
        log_id=payload.log_id,
        message_id=payload.message_id,
        error=payload.error,
    )
    try:
        await ingestor.ingest(session, report)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.exception(
            "Delivery report processing failed",
            extra={"log_id": payload.log_id, "operation": "webhook.ingest"},
        )
    return WebhookAck()


@router.get(
    "/track/open",
    summary="Open-tracking pixel",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}, "description": "1x1 transparent PNG"}},
)
async def track_open(
    session: SessionDep,
    tracker: EngagementTrackerDep,
    attempt_id: Annotated[str | None, Query(alias="id")] = None,
) -> Response:
    """Record an open and always return the pixel."""
    try:
        await tracker.record_open(session, attempt_id)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.exception(
            "Open tracking failed",
            extra={"attempt_id": attempt_id, "operation": "tracking.open"},
        )
    return Response(content=PIXEL_PNG, media_type="image/png", headers=_NO_STORE)


@router.get(
    "/track/click",
    summary="Click-tracking redirect",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
    responses={400: {"description": "Missing or non-http(s) target url"}},
)
async def track_click(
    session: SessionDep,
    tracker: EngagementTrackerDep,
    url: Annotated[str, Query(description="Destination url")],
    attempt_id: Annotated[str | None, Query(alias="id")] = None,
) -> RedirectResponse:
    """Record a click, then redirect whether or not the attempt was found.

    Only absolute http(s) targets are redirected to; any other target is
    rejected with 400 so the endpoint cannot serve as an open redirect to
    script or relative urls. This is stricter than redirecting unconditionally.
    """
    target = urlsplit(url)
    if target.scheme not in {"http", "https"} or not target.netloc:
        raise ValidationException(
            "Click target must be an absolute http(s) url",
            type="invalid-redirect-url",
            extra={"url": url},
        )

    try:
        await tracker.record_click(session, attempt_id)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.exception(
            "Click tracking failed",
            extra={"attempt_id": attempt_id, "operation": "tracking.click"},
        )
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND, headers=_NO_STORE)


# ============================================================================
# Analytics
# ============================================================================


@router.get(
    "/analytics",
    response_model=AnalyticsResponse,
    summary="Engagement and delivery analytics",
    description="""
Aggregate counts over delivery attempts, optionally filtered by recipient
group and logical message: total, opened, clicked, open/click rates (percent),
per-channel delivered/failed counts and carrier-reported SMS outcomes.
""",
)
async def get_analytics(
    session: SessionDep,
    repo: DeliveryAttemptRepositoryDep,
    group_ref: Annotated[str | None, Query(alias="recipientGroupId")] = None,
    message_ref: Annotated[str | None, Query(alias="messageId")] = None,
) -> AnalyticsResponse:
    analytics = await compute_analytics(
        session, group_ref=group_ref, message_ref=message_ref, repository=repo
    )
    return AnalyticsResponse.model_validate(analytics)
