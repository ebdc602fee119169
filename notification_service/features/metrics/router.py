"""Prometheus metrics endpoint for observability.

Endpoints:
    GET /metrics - Prometheus scrape endpoint

Metrics Exposed:
    Dispatch:
        - notification_attempts_total - Send outcomes by channel and status
        - notification_bulk_recipients_total - Bulk send per-recipient outcomes
        - notification_resend_total - Manual resend outcomes
        - notification_reminders_sent_total - Reminders by trigger (sweep, manual)

    Providers:
        - notification_provider_request_duration_seconds - Provider call latency
        - notification_provider_errors_total - Failures by provider and category
        - notification_token_exchanges_total - Token exchanges by outcome
        - notification_token_cache_hits_total - Cached token reuse

    Tracking:
        - notification_webhook_events_total - Delivery reports by outcome
        - notification_engagement_events_total - Opens and clicks by outcome
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    data = generate_latest(REGISTRY)
    return Response(
        content=data,
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
