"""Tenant (business account) configuration and lookup by dialled number."""

from __future__ import annotations

import json
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, field_validator

from reception.availability import BusinessHours
from reception.config import Settings
from reception.phones import normalize_phone

log = logging.getLogger("reception.tenants")


class TenantConfig(BaseModel):
    """One configured business: its numbers, calendar and opening hours."""

    key: str
    business_name: str = "Trades Reception"
    phone_numbers: list[str] = []
    owner_phone: str = ""
    sms_from: str = ""
    calendar_id: str = "primary"
    timezone: str = "Australia/Sydney"
    open_hour: int = 7
    close_hour: int = 17
    business_days: list[int] = [0, 1, 2, 3, 4]
    job_duration_minutes: int = 60
    buffer_minutes: int = 15
    duplicate_window_days: int = 7

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone {value!r}") from e
        return value

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def hours(self) -> BusinessHours:
        return BusinessHours(
            open_hour=self.open_hour,
            close_hour=self.close_hour,
            tz=self.zone,
            days=list(self.business_days),
        )


def default_tenant(settings: Settings) -> TenantConfig:
    """The tenant described by the flat settings fields."""
    return TenantConfig(
        key=settings.tenant_key,
        business_name=settings.business_name,
        phone_numbers=[settings.twilio_phone_number] if settings.twilio_phone_number else [],
        owner_phone=settings.owner_phone,
        sms_from=settings.twilio_phone_number,
        calendar_id=settings.google_calendar_id,
        timezone=settings.default_timezone,
        open_hour=settings.open_hour,
        close_hour=settings.close_hour,
        business_days=list(settings.business_days),
        job_duration_minutes=settings.job_duration_minutes,
        buffer_minutes=settings.buffer_minutes,
        duplicate_window_days=settings.duplicate_window_days,
    )


class TenantDirectory:
    """Resolves the dialled ("To") number of a call or text to its tenant."""

    def __init__(self, default: TenantConfig, tenants: list[TenantConfig] | None = None) -> None:
        self.default = default
        self._by_key: dict[str, TenantConfig] = {default.key: default}
        self._by_number: dict[str, TenantConfig] = {}
        for tenant in [default, *(tenants or [])]:
            self._by_key[tenant.key] = tenant
            for number in tenant.phone_numbers:
                self._by_number[normalize_phone(number)] = tenant

    @classmethod
    def from_settings(cls, settings: Settings) -> "TenantDirectory":
        tenants: list[TenantConfig] = []
        if settings.tenants_json:
            for raw in json.loads(settings.tenants_json):
                tenant = TenantConfig(**raw)
                if not tenant.sms_from and tenant.phone_numbers:
                    tenant.sms_from = tenant.phone_numbers[0]
                tenants.append(tenant)
        directory = cls(default_tenant(settings), tenants)
        log.info("Loaded %d tenant(s)", len(directory._by_key))
        return directory

    def for_number(self, to_number: str | None) -> TenantConfig:
        return self._by_number.get(normalize_phone(to_number), self.default)

    def get(self, key: str) -> TenantConfig | None:
        return self._by_key.get(key)

    def all(self) -> list[TenantConfig]:
        return list(self._by_key.values())
