"""Tests for the notification CLI commands."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from notification_service.cli.commands import notifications as commands
from notification_service.cli.main import cli
from notification_service.core.database.exceptions import NotFoundError


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock()
    return session


@pytest.fixture
def runtime(monkeypatch: pytest.MonkeyPatch, session: MagicMock) -> MagicMock:
    """Patch database and provider setup out of the commands."""

    @asynccontextmanager
    async def fake_session():
        yield session

    runtime = MagicMock()
    runtime.aclose = AsyncMock()
    monkeypatch.setattr(commands, "init_database", AsyncMock())
    monkeypatch.setattr(commands, "close_database", AsyncMock())
    monkeypatch.setattr(commands, "get_async_session", fake_session)
    monkeypatch.setattr(commands.NotificationRuntime, "create", MagicMock(return_value=runtime))
    return runtime


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    for name in ("sweep", "resend", "serve"):
        assert name in result.output


def test_sweep_runs_and_commits(runtime: MagicMock, session: MagicMock) -> None:
    reminder_sweep = MagicMock()
    reminder_sweep.run_sweep = AsyncMock(return_value=3)
    runtime.sweep.return_value = reminder_sweep

    result = CliRunner().invoke(cli, ["sweep", "--lookback-days", "2"])

    assert result.exit_code == 0, result.output
    assert "Reminders sent: 3" in result.output
    reminder_sweep.run_sweep.assert_awaited_once_with(session, timedelta(days=2))
    session.commit.assert_awaited_once()
    runtime.aclose.assert_awaited_once()


def test_sweep_rejects_zero_lookback() -> None:
    result = CliRunner().invoke(cli, ["sweep", "--lookback-days", "0"])

    assert result.exit_code == 2


def test_resend_success(runtime: MagicMock) -> None:
    attempt_id = uuid.uuid4()
    attempt = SimpleNamespace(
        id=attempt_id,
        status="sent",
        provider="orange",
        attempt_count=2,
        last_error_retryable=False,
        error_message=None,
    )
    runtime.orchestrator.return_value.resend = AsyncMock(return_value=attempt)

    result = CliRunner().invoke(cli, ["resend", str(attempt_id)])

    assert result.exit_code == 0, result.output
    assert "sent via orange" in result.output


def test_resend_failure_exits_2(runtime: MagicMock) -> None:
    attempt = SimpleNamespace(
        id=uuid.uuid4(),
        status="failed",
        provider="mtn",
        attempt_count=2,
        last_error_retryable=True,
        error_message="mtn request timed out",
    )
    runtime.orchestrator.return_value.resend = AsyncMock(return_value=attempt)

    result = CliRunner().invoke(cli, ["resend", str(attempt.id)])

    assert result.exit_code == 2
    assert "safe to retry" in result.output


def test_resend_unknown_attempt_exits_1(runtime: MagicMock) -> None:
    attempt_id = uuid.uuid4()
    runtime.orchestrator.return_value.resend = AsyncMock(
        side_effect=NotFoundError("DeliveryAttempt", {"id": attempt_id})
    )

    result = CliRunner().invoke(cli, ["resend", str(attempt_id)])

    assert result.exit_code == 1
    runtime.aclose.assert_awaited_once()


def test_resend_rejects_malformed_id() -> None:
    result = CliRunner().invoke(cli, ["resend", "not-a-uuid"])

    assert result.exit_code == 2
