"""Calendar provider abstractions and implementations."""

from .base import BusyInterval, CalendarEvent, CalendarProvider, insert_event_with_retry

__all__ = ["BusyInterval", "CalendarEvent", "CalendarProvider", "insert_event_with_retry"]
