"""Keyword intent classification for a caller's opening sentence.

The table is ordered: the first rule with a matching keyword wins. A
caller who says "the leak is back, I need to reschedule" is rescheduling,
so cancellation outranks emergencies, which outrank quotes, which outrank
existing-customer phrasing. Changing a keyword or the order is a policy
change and bumps ``INTENT_TABLE_VERSION``.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from reception.models.call import Intent

INTENT_TABLE_VERSION = "2026-10.2"


class IntentRule(NamedTuple):
    intent: Intent
    keywords: tuple[str, ...]


INTENT_TABLE: tuple[IntentRule, ...] = (
    IntentRule(
        Intent.CANCEL_RESCHEDULE,
        (
            "cancel", "cancelling", "canceling", "cancellation",
            "reschedule", "rescheduling", "rebook", "move my booking",
            "move my appointment", "change my booking", "change my appointment",
        ),
    ),
    IntentRule(
        Intent.EMERGENCY,
        (
            "emergency", "urgent", "urgently", "burst", "bursting", "leak",
            "leaking", "flood", "flooding", "flooded", "no hot water",
            "no power", "sparking", "sparks", "smell gas", "smell of gas",
            "smells like gas", "gas smell", "burning smell", "smoke coming",
            "smoking", "overflowing", "blocked toilet", "right now",
        ),
    ),
    IntentRule(
        Intent.QUOTE,
        ("quote", "quotes", "estimate", "how much", "price", "pricing", "cost"),
    ),
    IntentRule(
        Intent.EXISTING_CUSTOMER,
        (
            "existing customer", "already booked", "my booking", "my appointment",
            "you came out", "you were here", "last time", "follow up", "follow-up",
            "came out before",
        ),
    ),
)

# Agreeable phrases that start with "no", as in "yeah no worries"
AFFIRMING_PHRASES = (
    "no worries", "no problem", "no problems", "no probs", "no dramas",
    "no drama", "no trouble", "no stress",
)

_NON_WORD = re.compile(r"[^a-z0-9'\s-]")
_SPACES = re.compile(r"\s+")


def _normalize(text: str) -> str:
    text = _NON_WORD.sub(" ", (text or "").lower())
    return " " + _SPACES.sub(" ", text).strip() + " "


def classify(text: str) -> Intent:
    """Map an utterance to an :class:`Intent`; NEW_BOOKING when nothing matches."""
    padded = _normalize(text)
    for rule in INTENT_TABLE:
        for keyword in rule.keywords:
            if f" {keyword} " in padded:
                return rule.intent
    return Intent.NEW_BOOKING
