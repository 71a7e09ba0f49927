"""Pydantic models for bookings found on, or headed for, the calendar."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DuplicateBooking(BaseModel):
    """An existing calendar booking that looks like the one being made."""

    id: str
    summary: str = ""
    when: datetime


class PendingConfirmation(BaseModel):
    """A booking accepted on the phone, waiting for the customer's Y/N text.

    At most one lives per (tenant, phone); a newer booking for the same
    customer replaces it.
    """

    tenant_key: str
    phone: str
    name: str = ""
    job: str = ""
    address: str = ""
    when: str = ""  # spoken form, e.g. "Thursday 22 October at 3pm"
    timezone: str = "UTC"
    start: Optional[datetime] = None
    event_id: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None
