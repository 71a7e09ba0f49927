"""Find an existing booking for the same customer at the same address."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

from reception.calendar_providers.base import CalendarProvider
from reception.models.booking import DuplicateBooking

log = logging.getLogger("reception.duplicates")

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_text(value: str | None) -> str:
    """Lowercase and drop everything that is not a letter or digit."""
    return _NON_ALNUM.sub("", (value or "").lower())


class DuplicateDetector:
    """Searches the calendar around a requested time for a matching booking.

    A match needs both the address and the customer name to appear in the
    event's location, summary or description. Either one alone is too
    common (shared surnames, repeat jobs at a rental) to act on.
    """

    def __init__(
        self,
        provider: CalendarProvider | None,
        calendar_id: str,
        window_days: int = 7,
    ) -> None:
        self._provider = provider
        self._calendar_id = calendar_id
        self._window = timedelta(days=window_days)

    async def find_duplicate(
        self,
        name: str | None,
        address: str | None,
        around: datetime,
    ) -> DuplicateBooking | None:
        norm_name = normalize_text(name)
        norm_address = normalize_text(address)
        if self._provider is None or not norm_name or not norm_address:
            return None

        try:
            events = await self._provider.search_events(
                self._calendar_id,
                (name or "").strip(),
                around - self._window,
                around + self._window,
            )
        except Exception as e:
            log.warning("Duplicate search failed, treating as no duplicate: %s", e)
            return None

        matches = []
        for event in events:
            haystack = normalize_text(
                " ".join((event.location, event.summary, event.description))
            )
            if norm_address in haystack and norm_name in haystack:
                matches.append(event)

        if not matches:
            return None

        first = min(matches, key=lambda e: e.start)
        log.info("Possible duplicate booking %s at %s", first.id, first.start.isoformat())
        return DuplicateBooking(id=first.id, summary=first.summary, when=first.start)
