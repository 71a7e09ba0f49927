"""Application configuration via environment variables."""

from __future__ import annotations

import json
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("reception.config")


class Settings(BaseSettings):
    # Default tenant (single-business deployments only need these)
    business_name: str = "Trades Reception"
    tenant_key: str = "default"
    default_timezone: str = "Australia/Sydney"
    owner_phone: str = ""
    google_calendar_id: str = "primary"
    job_duration_minutes: int = 60
    buffer_minutes: int = 15
    open_hour: int = 7
    close_hour: int = 17
    business_days: list[int] = [0, 1, 2, 3, 4]
    duplicate_window_days: int = 7

    # Extra tenants: JSON list of TenantConfig objects
    tenants_json: str = ""

    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    validate_twilio_signature: bool = True

    # Google Calendar: path to the service account file, or the JSON itself
    google_service_account_json: str = ""

    # Supabase keyed store
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Dialogue policy
    reject_threshold: int = 2
    silence_alert_threshold: int = 2
    silence_escalate_threshold: int = 4
    low_confidence_threshold: float = 0.35
    accept_tolerance_minutes: int = 5
    slot_options: int = 3
    search_horizon_days: int = 14
    conflict_step_minutes: int = 15
    lead_time_minutes: int = 15

    # Reliability
    calendar_insert_attempts: int = 3
    calendar_retry_base_delay: float = 0.5
    session_ttl_seconds: int = 1800
    pending_confirmation_ttl_hours: int = 72
    housekeeping_interval_seconds: int = 60

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 10000
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore",
    )

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"AC...", "path/to/service-account.json", "https://xyz.supabase.co"}

        # Business hours must make sense
        if not 0 <= self.open_hour < self.close_hour <= 24:
            raise ValueError(
                f"OPEN_HOUR ({self.open_hour}) must be before CLOSE_HOUR ({self.close_hour})."
            )
        if not self.business_days or any(d not in range(7) for d in self.business_days):
            raise ValueError("BUSINESS_DAYS must list weekdays 0 (Monday) to 6 (Sunday).")
        try:
            ZoneInfo(self.default_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"DEFAULT_TIMEZONE {self.default_timezone!r} is not a known zone.") from e

        if self.tenants_json:
            try:
                json.loads(self.tenants_json)
            except json.JSONDecodeError as e:
                raise ValueError(f"TENANTS_JSON is not valid JSON: {e}") from e

        # Admin API key: warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        # Collaborators degrade to a no-op when missing
        if not self.twilio_configured or self.twilio_account_sid in _placeholders:
            warnings.append("Twilio credentials missing — owner and customer texts will only be logged.")
        if not self.owner_phone:
            warnings.append("OWNER_PHONE not set — owner alerts for the default tenant will only be logged.")
        if not self.google_service_account_json or self.google_service_account_json in _placeholders:
            warnings.append(
                "GOOGLE_SERVICE_ACCOUNT_JSON not set — availability search assumes an empty "
                "calendar and bookings fall back to manual confirmation."
            )
        if not self.supabase_configured or self.supabase_url in _placeholders:
            warnings.append(
                "Supabase not configured — pending confirmations are kept in memory, "
                "quote leads, customer notes and metrics are not persisted."
            )

        return warnings


settings = Settings()
