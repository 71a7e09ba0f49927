"""Collaborators shared by every call and text, built once at startup.

A collaborator whose configuration is missing degrades to a no-op (or, for
pending confirmations, an in-memory store) instead of failing the calls
that would use it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from reception.availability import AvailabilityEngine
from reception.calendar_providers.base import CalendarProvider
from reception.config import Settings
from reception.confirmations import ConfirmationStore
from reception.duplicates import DuplicateDetector
from reception.metrics import CallMetrics
from reception.notifications import LogNotifier, Notifier, TwilioNotifier
from reception.stores.base import KeyedStore
from reception.stores.memory import MemoryKeyedStore
from reception.tenants import TenantConfig, TenantDirectory

log = logging.getLogger("reception.services")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DialoguePolicy:
    """Thresholds and limits for the intake dialogue."""

    reject_threshold: int = 2
    silence_alert_threshold: int = 2
    silence_escalate_threshold: int = 4
    low_confidence_threshold: float = 0.35
    accept_tolerance_minutes: int = 5
    slot_options: int = 3
    search_horizon_days: int = 14
    conflict_step_minutes: int = 15
    lead_time_minutes: int = 15
    calendar_insert_attempts: int = 3
    calendar_retry_base_delay: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "DialoguePolicy":
        return cls(**{name: getattr(settings, name) for name in cls.__dataclass_fields__})


@dataclass
class Services:
    tenants: TenantDirectory
    notifier: Notifier
    confirmations: ConfirmationStore
    calendar: CalendarProvider | None = None
    store: KeyedStore | None = None
    policy: DialoguePolicy = field(default_factory=DialoguePolicy)
    metrics: CallMetrics = field(default_factory=CallMetrics)
    clock: Callable[[], datetime] = utcnow

    def availability_for(self, tenant: TenantConfig) -> AvailabilityEngine:
        return AvailabilityEngine(
            provider=self.calendar,
            calendar_id=tenant.calendar_id,
            hours=tenant.hours,
            duration_minutes=tenant.job_duration_minutes,
            buffer_minutes=tenant.buffer_minutes,
            horizon_days=self.policy.search_horizon_days,
            step_minutes=self.policy.conflict_step_minutes,
            lead_time_minutes=self.policy.lead_time_minutes,
        )

    def duplicates_for(self, tenant: TenantConfig) -> DuplicateDetector:
        return DuplicateDetector(
            provider=self.calendar,
            calendar_id=tenant.calendar_id,
            window_days=tenant.duplicate_window_days,
        )


def build_services(settings: Settings) -> Services:
    """Create the configured collaborators, falling back where config is missing."""
    calendar_provider = None
    if settings.google_service_account_json:
        try:
            from reception.calendar_providers.google import GoogleCalendarProvider
            calendar_provider = GoogleCalendarProvider(
                service_account=settings.google_service_account_json,
            )
        except Exception as e:
            log.warning("Google Calendar not configured: %s", e)

    store = None
    if settings.supabase_configured:
        try:
            from reception.stores.supabase import SupabaseKeyedStore
            store = SupabaseKeyedStore(settings.supabase_url, settings.supabase_service_key)
        except Exception as e:
            log.warning("Supabase not configured: %s", e)

    if settings.twilio_configured:
        notifier: Notifier = TwilioNotifier(settings.twilio_account_sid, settings.twilio_auth_token)
    else:
        notifier = LogNotifier()

    # Pending confirmations need somewhere to live even without Supabase.
    # The backend is fixed here and never switched at runtime.
    confirmations = ConfirmationStore(
        store or MemoryKeyedStore(),
        ttl=timedelta(hours=settings.pending_confirmation_ttl_hours),
    )

    return Services(
        tenants=TenantDirectory.from_settings(settings),
        notifier=notifier,
        confirmations=confirmations,
        calendar=calendar_provider,
        store=store,
        policy=DialoguePolicy.from_settings(settings),
    )
