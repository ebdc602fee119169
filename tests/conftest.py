"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off real infrastructure
    - Database Fixtures: in-memory SQLite engine and session
    - Provider Fixtures: fake channel adapters and an adapter registry
    - Service Fixtures: orchestrator and recipient profile factory
    - Application Fixtures: FastAPI app and HTTP client wired to the above
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("DB_SQLITE_FALLBACK_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("NOTIFY_REMINDER_SCHEDULE_ENABLED", "false")

from notification_service.features.notifications.models import (  # noqa: E402
    Channel,
    RecipientProfile,
)
from notification_service.features.notifications.providers import (  # noqa: E402
    AdapterRegistry,
    DeliveryTarget,
    InAppAdapter,
    OutboundMessage,
    SendResult,
    StatusResult,
)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Async SQLAlchemy engine on a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Session with all tables created; rolled back and dropped afterwards.

    Example:
        async def test_create_profile(db_session):
            db_session.add(RecipientProfile(recipient_ref="guardian-1"))
            await db_session.flush()
    """
    from notification_service.core.database.base import Base

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ============================================================================
# Provider Fixtures
# ============================================================================


class FakeAdapter:
    """In-memory provider adapter recording every send.

    ``fail_with`` makes every send fail; ``fail_for`` fails only the listed
    recipient refs. ``retryable`` marks failures as transient.
    """

    def __init__(
        self,
        channel: Channel,
        provider_name: str,
        *,
        message_id: str | None = None,
        fail_with: str | None = None,
        fail_for: set[str] | None = None,
        retryable: bool = False,
        status: str | None = "delivered",
    ) -> None:
        self.channel = channel
        self.provider_name = provider_name
        self.message_id = message_id
        self.fail_with = fail_with
        self.fail_for = fail_for or set()
        self.retryable = retryable
        self.status = status
        self.sent: list[tuple[DeliveryTarget, OutboundMessage]] = []
        self.polled: list[str] = []

    def destination_for(self, target: DeliveryTarget) -> str | None:
        if self.channel == Channel.EMAIL:
            return target.email
        if self.channel == Channel.IN_APP:
            return target.recipient_ref
        return target.phone

    async def send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult:
        self.sent.append((target, message))
        destination = self.destination_for(target)

        error = self.fail_with
        if target.recipient_ref in self.fail_for:
            error = error or "provider rejected recipient"
        if error:
            return SendResult.failure_result(
                self.provider_name,
                error,
                error_category="network" if self.retryable else "provider",
                retryable=self.retryable,
                destination=destination,
            )

        message_id = self.message_id or f"{self.provider_name}-{len(self.sent)}"
        return SendResult.success_result(
            self.provider_name,
            message_id,
            provider_status="accepted",
            destination=destination,
        )

    async def check_status(self, provider_message_id: str) -> StatusResult:
        self.polled.append(provider_message_id)
        return StatusResult(success=True, provider=self.provider_name, provider_status=self.status)


@pytest.fixture
def fake_adapter_cls() -> type[FakeAdapter]:
    """The FakeAdapter class, for tests that build their own adapters."""
    return FakeAdapter


@pytest.fixture
def adapters() -> dict[str, Any]:
    """One fake adapter per provider, keyed by provider name."""
    return {
        "smtp": FakeAdapter(Channel.EMAIL, "smtp"),
        "mtn": FakeAdapter(Channel.SMS, "mtn"),
        "orange": FakeAdapter(Channel.SMS, "orange"),
        "whatsapp": FakeAdapter(Channel.CHAT, "whatsapp"),
        "in_app": InAppAdapter(),
    }


@pytest.fixture
def registry(adapters: dict[str, Any]) -> AdapterRegistry:
    """Adapter registry with MTN as the default SMS carrier."""
    return AdapterRegistry(adapters.values(), channel_defaults={Channel.SMS: "mtn"})


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def orchestrator(registry: AdapterRegistry):
    from notification_service.features.notifications.service import DispatchOrchestrator

    return DispatchOrchestrator(registry, max_concurrency=4)


@pytest.fixture
def make_profile(db_session: AsyncSession):
    """Factory persisting a RecipientProfile.

    Example:
        profile = await make_profile("guardian-1", sms_enabled=True)
    """

    async def _make(recipient_ref: str, **fields: Any) -> RecipientProfile:
        defaults: dict[str, Any] = {
            "email": f"{recipient_ref}@example.com",
            "phone": "671234567",
            "group_ref": "form-1a",
        }
        defaults.update(fields)
        profile = RecipientProfile(recipient_ref=recipient_ref, **defaults)
        db_session.add(profile)
        await db_session.flush()
        return profile

    return _make


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app(db_session: AsyncSession, registry: AdapterRegistry):
    """FastAPI app using the test session and the fake adapter registry.

    The lifespan does not run under ASGITransport, so the provider runtime
    is placed on ``app.state`` directly.
    """
    from notification_service.app.main import create_app
    from notification_service.core.dependencies.database import get_db_session
    from notification_service.features.notifications.runtime import NotificationRuntime
    from notification_service.features.notifications.tokens import ProviderTokenCache

    application = create_app()

    async def override_get_db_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    application.dependency_overrides[get_db_session] = override_get_db_session

    client = httpx.AsyncClient()
    application.state.notifications = NotificationRuntime(
        client=client,
        token_cache=ProviderTokenCache(),
        registry=registry,
    )
    try:
        yield application
    finally:
        await client.aclose()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client for the test app.

    Example:
        async def test_metrics(client):
            response = await client.get("/metrics")
            assert response.status_code == 200
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
