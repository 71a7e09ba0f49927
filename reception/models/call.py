"""Pydantic model tracking the caller's state through the intake call."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .booking import DuplicateBooking


class Step(str, Enum):
    """The input the session is currently waiting for."""

    INTENT = "intent"
    JOB = "job"
    ADDRESS = "address"
    NAME = "name"
    ACCESS = "access"
    TIME = "time"
    PICK_SLOT = "pickSlot"
    CONFIRM = "confirm"


class Intent(str, Enum):
    NEW_BOOKING = "NEW_BOOKING"
    EMERGENCY = "EMERGENCY"
    QUOTE = "QUOTE"
    EXISTING_CUSTOMER = "EXISTING_CUSTOMER"
    CANCEL_RESCHEDULE = "CANCEL_RESCHEDULE"


class RejectCounts(BaseModel):
    address: int = 0
    time: int = 0


class CallState(BaseModel):
    """Mutable session state for a single inbound call.

    Captured fields are written by their own step only; the confirm step's
    "no" path is the one correction route, and it clears the scheduling
    fields before returning to ``time``.
    """

    call_id: str = ""
    tenant_key: str = ""
    from_number: str = ""

    step: Step = Step.INTENT
    intent: Optional[Intent] = None

    # Captured answers
    first_utterance: str = ""
    job: Optional[str] = None
    address: Optional[str] = None
    name: Optional[str] = None
    access_note: Optional[str] = None
    spoken_time: Optional[str] = None

    # Scheduling
    proposed_slots: list[datetime] = Field(default_factory=list)
    booked_start: Optional[datetime] = None
    duplicate_event: Optional[DuplicateBooking] = None

    # Escalation counters (monotonic)
    reject_counts: RejectCounts = Field(default_factory=RejectCounts)
    silent_tries: int = 0
    quiet_alert_sent: bool = False

    # Prompt replayed when a turn is rejected
    last_prompt: str = ""

    # Commit results
    event_id: Optional[str] = None


class TurnResult(BaseModel):
    """What to say next, and whether the caller is expected to answer."""

    prompt: str
    expect_more_input: bool = True
