"""Phone number normalization to a country's international digit format."""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")


def normalize(raw: str | None, country_code: str) -> str:
    """Canonicalize ``raw`` to international digits for ``country_code``.

    Non-digits are stripped. A number already carrying the country prefix
    is kept, a leading trunk ``0`` is replaced by the prefix, and anything
    else gets the prefix prepended. Never raises: malformed input yields a
    best-effort digit string and the provider reports the invalid number.

    >>> normalize("+237 6 71 23 45 67", "237")
    '237671234567'
    >>> normalize("0671234567", "237")
    '237671234567'
    >>> normalize("671234567", "237")
    '237671234567'
    """
    prefix = _NON_DIGITS.sub("", country_code or "")
    digits = _NON_DIGITS.sub("", raw or "")

    if not digits or not prefix:
        return digits
    if digits.startswith(prefix):
        return digits
    if digits.startswith("0"):
        return prefix + digits[1:]
    return prefix + digits


def to_e164(raw: str | None, country_code: str) -> str:
    """Normalize and add the leading ``+``."""
    digits = normalize(raw, country_code)
    return f"+{digits}" if digits else ""


__all__ = ["normalize", "to_e164"]
