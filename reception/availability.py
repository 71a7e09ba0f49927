"""Forward-sweep availability search over a tenant's calendar.

The engine fetches every busy interval for the search horizon in one
calendar query, then walks a cursor forward: a clear slot is kept and the
cursor jumps a whole slot, a conflict nudges the cursor one step. Slots
that would run past closing time, or land on a closed day, roll the cursor
to the next opening instant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from reception.calendar_providers.base import BusyInterval, CalendarProvider

log = logging.getLogger("reception.availability")


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: touching edges do not conflict."""
    return a_start < b_end and b_start < a_end


def within_tolerance(slot: datetime, desired: datetime, minutes: int = 5) -> bool:
    return abs(slot - desired) <= timedelta(minutes=minutes)


@dataclass
class BusinessHours:
    """Opening hours for one tenant, evaluated in the tenant's zone.

    ``days`` holds weekday numbers, Monday being 0.
    """

    open_hour: int
    close_hour: int
    tz: ZoneInfo
    days: list[int] = field(default_factory=lambda: [0, 1, 2, 3, 4])

    def is_business_day(self, day: date) -> bool:
        return day.weekday() in self.days

    def opening(self, day: date) -> datetime:
        return datetime.combine(day, time(self.open_hour), tzinfo=self.tz)

    def closing(self, dt: datetime) -> datetime:
        """Closing instant on the local day of ``dt``."""
        local = dt.astimezone(self.tz)
        if self.close_hour >= 24:
            return datetime.combine(local.date() + timedelta(days=1), time(0), tzinfo=self.tz)
        return datetime.combine(local.date(), time(self.close_hour), tzinfo=self.tz)

    def is_open(self, dt: datetime) -> bool:
        local = dt.astimezone(self.tz)
        if not self.is_business_day(local.date()):
            return False
        return self.opening(local.date()) <= local < self.closing(local)

    def next_open(self, dt: datetime) -> datetime:
        """``dt`` itself when open, otherwise the next opening instant."""
        local = dt.astimezone(self.tz)
        if self.is_open(local):
            return local
        day = local.date()
        if self.is_business_day(day) and local < self.opening(day):
            return self.opening(day)
        for _ in range(7):
            day += timedelta(days=1)
            if self.is_business_day(day):
                return self.opening(day)
        raise ValueError(f"No business days configured: {self.days!r}")

    def next_day_opening(self, dt: datetime) -> datetime:
        """Opening instant of the first business day after the local day of ``dt``."""
        local = dt.astimezone(self.tz)
        tomorrow = datetime.combine(local.date() + timedelta(days=1), time(0), tzinfo=self.tz)
        return self.next_open(tomorrow)


class AvailabilityEngine:
    """Find open appointment slots for one tenant calendar.

    A slot is ``[start, start + duration + buffer)``. Without a calendar
    provider every business-hours slot counts as free.
    """

    def __init__(
        self,
        provider: CalendarProvider | None,
        calendar_id: str,
        hours: BusinessHours,
        duration_minutes: int = 60,
        buffer_minutes: int = 15,
        horizon_days: int = 14,
        step_minutes: int = 15,
        lead_time_minutes: int = 15,
    ) -> None:
        self._provider = provider
        self._calendar_id = calendar_id
        self.hours = hours
        self.slot_length = timedelta(minutes=duration_minutes + buffer_minutes)
        self.duration = timedelta(minutes=duration_minutes)
        self._horizon = timedelta(days=horizon_days)
        self._step = timedelta(minutes=step_minutes)
        self._lead = timedelta(minutes=lead_time_minutes)

    def slot_end(self, start: datetime) -> datetime:
        return start + self.slot_length

    def _round_up(self, dt: datetime) -> datetime:
        step = int(self._step.total_seconds() // 60) or 1
        floored = dt.replace(second=0, microsecond=0)
        extra = floored.minute % step
        if extra == 0 and floored == dt:
            return dt
        return floored + timedelta(minutes=step - extra)

    async def _busy(self, start: datetime, end: datetime) -> list[BusyInterval]:
        if self._provider is None:
            return []
        return await self._provider.list_busy(self._calendar_id, start, end)

    async def next_available_slots(
        self,
        desired_start: datetime,
        count: int,
        now: datetime | None = None,
    ) -> list[datetime]:
        """Return up to ``count`` free slot starts at or after ``desired_start``.

        Starts are strictly increasing, inside business hours and clear of
        every busy interval. Fewer than ``count`` (possibly none) means the
        horizon ran out.

        Raises:
            CalendarError: the busy-interval query failed.
        """
        tz = self.hours.tz
        now = (now or datetime.now(tz)).astimezone(tz)
        earliest = now + self._lead
        desired = desired_start.astimezone(tz)

        if desired < earliest:
            cursor = self._round_up(earliest)
        else:
            cursor = desired
        cursor = self.hours.next_open(cursor)

        horizon_end = cursor + self._horizon
        busy = await self._busy(cursor, horizon_end + self.slot_length)
        log.debug("Searching %d busy intervals from %s", len(busy), cursor.isoformat())

        slots: list[datetime] = []
        while len(slots) < count and cursor < horizon_end:
            end = cursor + self.slot_length
            if not self.hours.is_open(cursor) or end > self.hours.closing(cursor):
                cursor = self.hours.next_day_opening(cursor)
                continue

            if any(overlaps(cursor, end, b.start, b.end) for b in busy):
                cursor += self._step
                continue

            slots.append(cursor)
            cursor = end

        log.info(
            "Availability from %s: %d slot(s) %s",
            desired.isoformat(), len(slots), [s.isoformat() for s in slots],
        )
        return slots
