"""Engagement tracking: open pixel and click redirect.

Tracking endpoints are embedded in outbound email, so their recording
side is best-effort: unknown or malformed ids are ignored and nothing is
ever surfaced to the browser.
"""

from __future__ import annotations

import base64
import logging
import uuid
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from notification_service.features.notifications.metrics import (
    notification_engagement_events_total,
)
from notification_service.features.notifications.repository import (
    DeliveryAttemptRepository,
    get_delivery_attempt_repository,
)
from notification_service.features.notifications.state import record_click, record_open

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Fixed 1x1 transparent PNG served by the open-tracking endpoint
PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)

OPEN_PATH = "/notifications/track/open"
CLICK_PATH = "/notifications/track/click"


def build_open_url(base_url: str, attempt_id: str) -> str:
    """Open-tracking pixel URL for an attempt."""
    return f"{base_url.rstrip('/')}{OPEN_PATH}?{urlencode({'id': attempt_id})}"


def build_click_url(base_url: str, attempt_id: str, target_url: str) -> str:
    """Tracked link that records a click then redirects to ``target_url``."""
    query = urlencode({"id": attempt_id, "url": target_url})
    return f"{base_url.rstrip('/')}{CLICK_PATH}?{query}"


def parse_attempt_id(raw: str | None) -> uuid.UUID | None:
    if not raw:
        return None
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        return None


class EngagementTracker:
    """Records opens and clicks on delivery attempts.

    ``openedAt``/``clickedAt`` are set at most once; repeated hits only
    bump metrics.
    """

    def __init__(self, repository: DeliveryAttemptRepository | None = None) -> None:
        self._repository = repository or get_delivery_attempt_repository()

    async def record_open(self, session: AsyncSession, raw_id: str | None) -> bool:
        """Returns True when the attempt changed."""
        return await self._record(session, raw_id, "open")

    async def record_click(self, session: AsyncSession, raw_id: str | None) -> bool:
        """Returns True when the attempt changed."""
        return await self._record(session, raw_id, "click")

    async def _record(self, session: AsyncSession, raw_id: str | None, event: str) -> bool:
        attempt_id = parse_attempt_id(raw_id)
        attempt = await self._repository.get(session, attempt_id) if attempt_id else None
        if attempt is None:
            notification_engagement_events_total.labels(event=event, outcome="unknown").inc()
            logger.info(
                "Tracking hit for unknown attempt",
                extra={"attempt_id": raw_id, "event": event, "operation": f"tracking.{event}"},
            )
            return False

        changed = record_open(attempt) if event == "open" else record_click(attempt)
        notification_engagement_events_total.labels(
            event=event, outcome="recorded" if changed else "unchanged"
        ).inc()
        if changed:
            await session.flush()
            logger.info(
                "Engagement recorded",
                extra={
                    "delivery_attempt_id": str(attempt.id),
                    "event": event,
                    "status": attempt.status,
                    "operation": f"tracking.{event}",
                },
            )
        return changed


__all__ = [
    "CLICK_PATH",
    "OPEN_PATH",
    "PIXEL_PNG",
    "EngagementTracker",
    "build_click_url",
    "build_open_url",
    "parse_attempt_id",
]
