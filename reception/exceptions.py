"""Error types raised by the reception collaborators."""


class ReceptionError(RuntimeError):
    """Base class for errors raised inside the reception package."""


class CalendarError(ReceptionError):
    """Raised when a calendar read or write fails."""


class CalendarWriteError(CalendarError):
    """Raised when an event insert still fails after the bounded retry."""


class StoreError(ReceptionError):
    """Raised when the keyed row store rejects a read or write."""
