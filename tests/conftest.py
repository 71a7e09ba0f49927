"""Shared fakes: an in-memory calendar, a recording notifier, a fixed clock."""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from reception.availability import overlaps
from reception.calendar_providers.base import BusyInterval, CalendarEvent, CalendarProvider
from reception.confirmations import ConfirmationStore
from reception.exceptions import CalendarError
from reception.notifications import Notifier
from reception.services import DialoguePolicy, Services
from reception.session import IntakeSession
from reception.stores.memory import MemoryKeyedStore
from reception.tenants import TenantConfig, TenantDirectory

SYDNEY = ZoneInfo("Australia/Sydney")

# Wednesday 21 October 2026, 10am in Sydney
NOW = datetime(2026, 10, 21, 10, 0, tzinfo=SYDNEY)


def at(day: int, hour: int, minute: int = 0, month: int = 10) -> datetime:
    return datetime(2026, month, day, hour, minute, tzinfo=SYDNEY)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeCalendarProvider(CalendarProvider):
    """Keeps busy intervals and events in lists; can be told to fail."""

    def __init__(self, busy=None, events=None) -> None:
        self.busy: list[BusyInterval] = list(busy or [])
        self.events: list[CalendarEvent] = list(events or [])
        self.created: list[CalendarEvent] = []
        self.cancelled: list[str] = []
        self.busy_calls = 0
        self.create_calls = 0
        self.fail_list_busy = False
        self.fail_search = False
        self.fail_creates = 0

    async def list_busy(self, calendar_id, time_min, time_max):
        self.busy_calls += 1
        if self.fail_list_busy:
            raise CalendarError("freebusy unavailable")
        return [b for b in self.busy if overlaps(b.start, b.end, time_min, time_max)]

    async def create_event(self, calendar_id, event):
        self.create_calls += 1
        if self.fail_creates > 0:
            self.fail_creates -= 1
            raise RuntimeError("calendar down")
        event.id = f"evt{len(self.created) + 1}"
        self.created.append(event)
        return {"event_id": event.id, "html_link": f"https://calendar.test/{event.id}"}

    async def cancel_event(self, calendar_id, event_id):
        self.cancelled.append(event_id)
        return True

    async def search_events(self, calendar_id, query_text, time_min, time_max):
        if self.fail_search:
            raise CalendarError("search unavailable")
        return [e for e in self.events if time_min <= e.start <= time_max]


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.owner: list[str] = []
        self.customer: list[tuple[str, str]] = []

    async def notify_owner(self, tenant, text):
        self.owner.append(text)

    async def notify_customer(self, tenant, phone, text):
        self.customer.append((phone, text))


@pytest.fixture
def tenant() -> TenantConfig:
    return TenantConfig(
        key="acme",
        business_name="Acme Plumbing",
        phone_numbers=["+61 2 9000 0000"],
        owner_phone="+61411111111",
        sms_from="+61290000000",
        calendar_id="acme-calendar",
        timezone="Australia/Sydney",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def calendar() -> FakeCalendarProvider:
    return FakeCalendarProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store() -> MemoryKeyedStore:
    return MemoryKeyedStore()


@pytest.fixture
def services(tenant, calendar, notifier, store, clock) -> Services:
    return Services(
        tenants=TenantDirectory(tenant),
        notifier=notifier,
        confirmations=ConfirmationStore(store, ttl=timedelta(hours=72), clock=clock),
        calendar=calendar,
        store=store,
        policy=DialoguePolicy(calendar_retry_base_delay=0),
        clock=clock,
    )


@pytest.fixture
def make_session(tenant, services):
    def _make(call_id: str = "CA100", from_number: str = "+61400000000") -> IntakeSession:
        return IntakeSession(tenant, call_id, from_number, services)
    return _make
