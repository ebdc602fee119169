"""Unit tests for phone number normalization."""

from __future__ import annotations

import pytest

from notification_service.features.notifications.phone import normalize, to_e164


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("+237 6 71 23 45 67", "237671234567"),
        ("237671234567", "237671234567"),
        ("0671234567", "237671234567"),
        ("671234567", "237671234567"),
        ("(671) 23-45-67", "237671234567"),
    ],
)
def test_normalize_to_country_digits(raw: str, expected: str) -> None:
    """Every local or international spelling maps to the same digits."""
    assert normalize(raw, "237") == expected


def test_normalize_is_idempotent() -> None:
    once = normalize("0671234567", "237")
    assert normalize(once, "237") == once


@pytest.mark.parametrize("raw", [None, "", "   ", "+-()"])
def test_normalize_empty_input(raw: str | None) -> None:
    """Inputs without digits normalize to an empty string instead of raising."""
    assert normalize(raw, "237") == ""


def test_normalize_without_country_code_keeps_digits() -> None:
    assert normalize("+1 (555) 010-9999", "") == "15550109999"


def test_to_e164_adds_plus() -> None:
    assert to_e164("671234567", "237") == "+237671234567"
    assert to_e164("", "237") == ""
