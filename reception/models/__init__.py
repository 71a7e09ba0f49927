"""Data models for the reception layer."""

from .booking import DuplicateBooking, PendingConfirmation
from .call import CallState, Intent, RejectCounts, Step, TurnResult

__all__ = [
    "CallState",
    "DuplicateBooking",
    "Intent",
    "PendingConfirmation",
    "RejectCounts",
    "Step",
    "TurnResult",
]
