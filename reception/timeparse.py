"""Turn a caller's spoken time request into a zoned instant.

Speech transcripts say "3 p.m. tomorrow", "Friday arvo" or "half past
two", none of which a date parser reads reliably. ``normalize_time`` first
rewrites the informal parts into an unambiguous ``YYYY-MM-DD HH:MM`` phrase
anchored to "now" in the tenant's zone, then hands the phrase (or, when
nothing was rewritten, the raw text) to ``dateutil.parser``. Results are
biased forward: a bare time or weekday always means the next occurrence.

``None`` means nothing parseable was said; the dialogue treats that the
same as "as soon as possible".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

log = logging.getLogger("reception.timeparse")

NO_PREFERENCE_PHRASES = (
    "as soon as possible",
    "no preference",
    "first available",
    "straight away",
    "right away",
    "any time",
    "anytime",
    "whenever",
    "earliest",
    "asap",
    "soon",
)

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

_WEEKDAYS = {
    "monday": 0, "tuesday": 1, "tues": 1, "wednesday": 2, "weds": 2,
    "thursday": 3, "thurs": 3, "friday": 4, "saturday": 5, "sunday": 6,
}

# Day parts resolve to a representative start time
_DAY_PARTS = {
    "morning": time(9, 0),
    "midday": time(12, 0),
    "noon": time(12, 0),
    "lunchtime": time(12, 0),
    "afternoon": time(14, 0),
    "arvo": time(14, 0),
    "evening": time(18, 0),
    "tonight": time(18, 0),
}

_MONTH_HINT = re.compile(
    r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\b|\b\d{1,2}[/-]\d{1,2}\b"
)
_YEAR_HINT = re.compile(r"\b(19|20)\d{2}\b")
_ORDINAL = re.compile(r"\b(\d{1,2})(st|nd|rd|th)\b")

_HOUR = r"(\d{1,2}|" + "|".join(_NUMBER_WORDS) + r")"
_CLOCK = re.compile(r"\b(\d{1,2})[:.](\d{2})\s*(am|pm)?\b")
_HOUR_MERIDIEM = re.compile(r"\b" + _HOUR + r"\s*(am|pm)\b")
_HALF_PAST = re.compile(r"\bhalf past " + _HOUR + r"\b")
_QUARTER = re.compile(r"\bquarter (past|to) " + _HOUR + r"\b")
_OCLOCK = re.compile(r"\b" + _HOUR + r" o'?\s?clock\b")
_BARE_AT = re.compile(r"\b(?:at|around|about) " + _HOUR + r"\b(?!\s*(?:[:./-]|st\b|nd\b|rd\b|th\b))")

# Bare hours below this read as pm: nobody books a 3am tap repair
_EARLIEST_AM_HOUR = 7


@dataclass(frozen=True)
class TimeRequest:
    """A normalized time request.

    ``asap`` marks a no-preference answer; ``date_only`` marks a day with no
    time of day, which the scheduler may fill with that day's first slot.
    """

    start: datetime
    asap: bool = False
    date_only: bool = False


def _hour_value(token: str) -> int:
    return _NUMBER_WORDS.get(token) or int(token)


def _apply_meridiem(hour: int, meridiem: str | None) -> int:
    if meridiem == "pm" and hour != 12:
        return hour + 12
    if meridiem == "am" and hour == 12:
        return 0
    if meridiem is None and 1 <= hour < _EARLIEST_AM_HOUR:
        return hour + 12
    return hour


def _clean(text: str) -> str:
    text = text.lower()
    text = re.sub(r"\b([ap])\.\s?m\.?", r"\1m", text)
    text = text.replace("’", "'")
    text = _ORDINAL.sub(r"\1", text)
    return re.sub(r"[^\w:/.'\s-]", " ", text)


def _has_phrase(text: str, phrase: str) -> bool:
    return re.search(r"\b" + re.escape(phrase) + r"\b", text) is not None


def is_no_preference(text: str) -> bool:
    cleaned = _clean(text)
    return any(_has_phrase(cleaned, p) for p in NO_PREFERENCE_PHRASES)


def _extract_time(text: str) -> time | None:
    """Find a clock time in the text, or a day part such as "arvo"."""
    m = _CLOCK.search(text)
    if m:
        hour = _apply_meridiem(int(m.group(1)), m.group(3))
        minute = int(m.group(2))
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return time(hour, minute)

    m = _HOUR_MERIDIEM.search(text)
    if m:
        hour = _apply_meridiem(_hour_value(m.group(1)), m.group(2))
        if 0 <= hour <= 23:
            return time(hour, 0)

    m = _HALF_PAST.search(text)
    if m:
        hour = _apply_meridiem(_hour_value(m.group(1)), None)
        if 0 <= hour <= 23:
            return time(hour, 30)

    m = _QUARTER.search(text)
    if m:
        hour = _apply_meridiem(_hour_value(m.group(2)), None)
        if 0 <= hour <= 23:
            if m.group(1) == "past":
                return time(hour, 15)
            return time((hour - 1) % 24, 45)

    for pattern in (_OCLOCK, _BARE_AT):
        m = pattern.search(text)
        if m:
            hour = _apply_meridiem(_hour_value(m.group(1)), None)
            if 0 <= hour <= 23:
                return time(hour, 0)

    for part, value in _DAY_PARTS.items():
        if _has_phrase(text, part):
            return value
    return None


def _extract_date(text: str, today: date) -> date | None:
    """Resolve relative day words to a calendar date on or after today."""
    if _has_phrase(text, "day after tomorrow"):
        return today + timedelta(days=2)
    if _has_phrase(text, "tomorrow") or _has_phrase(text, "tmrw"):
        return today + timedelta(days=1)
    if _has_phrase(text, "next week"):
        return today + timedelta(days=7 - today.weekday())
    if any(_has_phrase(text, w) for w in ("today", "tonight", "this morning", "this afternoon", "this arvo", "this evening")):
        return today

    for name, weekday in _WEEKDAYS.items():
        if _has_phrase(text, name):
            days_ahead = (weekday - today.weekday()) % 7
            if days_ahead == 0 and not _has_phrase(text, "this " + name):
                days_ahead = 7
            return today + timedelta(days=days_ahead)
    return None


def _strip_times(text: str) -> str:
    for pattern in (_CLOCK, _HOUR_MERIDIEM, _HALF_PAST, _QUARTER, _OCLOCK, _BARE_AT):
        text = pattern.sub(" ", text)
    for part in _DAY_PARTS:
        text = re.sub(r"\b" + part + r"\b", " ", text)
    return text


def _parse_calendar_date(text: str, anchor: datetime) -> date | None:
    """Let dateutil read an explicit date such as "21 October" or "21/10"."""
    try:
        parsed = dateparser.parse(_strip_times(text), default=anchor, fuzzy=True, dayfirst=True)
    except (ValueError, OverflowError) as e:
        log.debug("No date in %r: %s", text, e)
        return None

    result = parsed.date()
    if result < anchor.date():
        if not _MONTH_HINT.search(text):
            result += relativedelta(months=1)
        elif not _YEAR_HINT.search(text):
            result += relativedelta(years=1)
        else:
            return None
    return result


def normalize_time(
    text: str,
    tz: ZoneInfo,
    now: datetime | None = None,
) -> TimeRequest | None:
    """Parse a spoken time request into a :class:`TimeRequest`.

    Args:
        text: The caller's transcript.
        tz: The tenant's zone; the result is aware in this zone.
        now: Anchor for relative phrases. Defaults to the current time.

    Returns:
        A TimeRequest, or None when nothing parseable was said.
    """
    now = (now or datetime.now(tz)).astimezone(tz)
    if not text or not text.strip():
        return None

    if is_no_preference(text):
        return TimeRequest(start=now, asap=True)

    cleaned = _clean(text)
    today = now.date()
    anchor = now.replace(tzinfo=None, hour=0, minute=0, second=0, microsecond=0)
    clock = _extract_time(cleaned)
    day = _extract_date(cleaned, today)

    if day is None and (clock is None or _MONTH_HINT.search(cleaned)):
        day = _parse_calendar_date(cleaned, anchor)
        if day is None and clock is None:
            return None

    # Unambiguous phrase for the parser, e.g. "2026-10-22 15:00"
    phrase = (day or today).isoformat()
    if clock is not None:
        phrase += f" {clock:%H:%M}"
    try:
        parsed = dateparser.parse(phrase, default=anchor)
    except (ValueError, OverflowError) as e:
        log.debug("Rewritten phrase %r did not parse: %s", phrase, e)
        return None
    start = parsed.replace(tzinfo=tz)

    if clock is None:
        if start.date() == today:
            start = now
        return TimeRequest(start=start, date_only=True)

    if day is None and start <= now:
        # A bare time that has passed today means the same time tomorrow
        start = start + timedelta(days=1)

    if start < now:
        # "this morning" said in the afternoon: the next open slot is the best we can do
        return TimeRequest(start=now, asap=True)
    return TimeRequest(start=start)


def format_when(dt: datetime) -> str:
    """Spoken form of an instant, e.g. "Thursday 22 October at 3pm"."""
    hour12 = dt.hour % 12 or 12
    clock = f"{hour12}:{dt.minute:02d}" if dt.minute else str(hour12)
    meridiem = "am" if dt.hour < 12 else "pm"
    return f"{dt:%A} {dt.day} {dt:%B} at {clock}{meridiem}"
