"""Abstract base class for calendar providers.

Defines the interface the scheduler needs from a shared calendar: busy
intervals for availability, free-text search for duplicate detection, and
event insert/delete for committing bookings. Any calendar backend (Google,
Outlook, etc.) implements this ABC.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from reception.exceptions import CalendarWriteError

logger = logging.getLogger(__name__)


@dataclass
class BusyInterval:
    """A range already occupied on a calendar, half-open ``[start, end)``."""

    start: datetime
    end: datetime


@dataclass
class CalendarEvent:
    """Represents a calendar event, either to be created or found by search."""

    summary: str
    start: datetime
    end: datetime
    description: str = ""
    attendees: list[str] = field(default_factory=list)  # email addresses
    location: str = ""
    id: str = ""


class CalendarProvider(ABC):
    """Abstract calendar backend.

    Every method is a remote call that may fail; callers decide whether a
    failure is fatal to what they are doing.
    """

    @abstractmethod
    async def list_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """Return busy intervals overlapping ``[time_min, time_max)``."""

    @abstractmethod
    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> dict:
        """Create a calendar event.

        Returns:
            Dict containing at least ``"event_id"`` and ``"html_link"``.
        """

    @abstractmethod
    async def cancel_event(
        self, calendar_id: str, event_id: str
    ) -> bool:
        """Cancel / delete a calendar event.

        Returns:
            True if the event was successfully cancelled.
        """

    @abstractmethod
    async def search_events(
        self,
        calendar_id: str,
        query_text: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[CalendarEvent]:
        """Return events in the window whose text matches ``query_text``."""


async def insert_event_with_retry(
    provider: CalendarProvider,
    calendar_id: str,
    event: CalendarEvent,
    attempts: int = 3,
    base_delay: float = 0.5,
) -> dict:
    """Insert an event, retrying a bounded number of times.

    The delay doubles after each failed attempt. Only writes are retried;
    reads fail fast so that a slow calendar never stalls a caller.

    Raises:
        CalendarWriteError: every attempt failed.
    """
    attempts = max(1, attempts)
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await provider.create_event(calendar_id, event)
        except Exception as e:
            last_error = e
            logger.warning(
                "Calendar insert attempt %d/%d failed: %s", attempt, attempts, e,
            )
            if attempt < attempts:
                await asyncio.sleep(base_delay * (2 ** (attempt - 1)))
    raise CalendarWriteError(
        f"Event insert failed after {attempts} attempts: {last_error}"
    ) from last_error
