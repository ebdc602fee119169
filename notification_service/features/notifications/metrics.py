"""Prometheus metrics for notification dispatch and delivery tracking.

Usage:
    from notification_service.features.notifications.metrics import (
        notification_attempts_total,
    )

    notification_attempts_total.labels(channel="sms", status="failed").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Dispatch
# =============================================================================

notification_attempts_total = Counter(
    "notification_attempts_total",
    "Delivery attempt send outcomes",
    labelnames=["channel", "status"],
)
"""
Labels:
    channel: email, sms, chat, in_app
    status: sent, failed
"""

notification_bulk_recipients_total = Counter(
    "notification_bulk_recipients_total",
    "Per-recipient outcomes of bulk sends",
    labelnames=["outcome"],
)
"""
Labels:
    outcome: dispatched, skipped, error
"""

notification_resend_total = Counter(
    "notification_resend_total",
    "Manual resend outcomes",
    labelnames=["channel", "outcome"],
)

notification_reminders_sent_total = Counter(
    "notification_reminders_sent_total",
    "Reminders dispatched to unresponsive recipients",
    labelnames=["trigger"],
)
"""
Labels:
    trigger: sweep, manual
"""

# =============================================================================
# Providers
# =============================================================================

notification_provider_request_duration_seconds = Histogram(
    "notification_provider_request_duration_seconds",
    "Duration of outbound provider calls",
    labelnames=["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

notification_provider_errors_total = Counter(
    "notification_provider_errors_total",
    "Provider call failures",
    labelnames=["provider", "error_category"],
)
"""
Labels:
    provider: smtp, mtn, orange, whatsapp
    error_category: provider, auth, configuration, network, unexpected
"""

notification_token_exchanges_total = Counter(
    "notification_token_exchanges_total",
    "Client-credentials token exchanges",
    labelnames=["provider", "outcome"],
)

notification_token_cache_hits_total = Counter(
    "notification_token_cache_hits_total",
    "Token requests served from the cache",
    labelnames=["provider"],
)

# =============================================================================
# Callbacks and engagement
# =============================================================================

notification_webhook_events_total = Counter(
    "notification_webhook_events_total",
    "Provider delivery-status callbacks",
    labelnames=["outcome"],
)
"""
Labels:
    outcome: applied, unchanged, unknown, error
"""

notification_engagement_events_total = Counter(
    "notification_engagement_events_total",
    "Open and click tracking hits",
    labelnames=["event", "outcome"],
)
