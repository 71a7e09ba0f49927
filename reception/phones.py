"""Phone number helpers shared by the voice and SMS channels."""

from __future__ import annotations

import re

_NON_DIGIT = re.compile(r"\D")


def normalize_phone(value: str | None) -> str:
    """Reduce a phone number to digits, keeping a leading ``+``.

    Twilio delivers E.164 on both channels, but owners paste numbers with
    spaces and dashes into tenant config, so both sides go through here
    before they are compared or used in a key.
    """
    if not value:
        return ""
    value = value.strip()
    digits = _NON_DIGIT.sub("", value)
    if not digits:
        return ""
    return "+" + digits if value.startswith("+") else digits


def redact_pii(value: str) -> str:
    """Mask PII for logging — show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]
