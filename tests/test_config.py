"""Tests for settings validation, tenants, services wiring and metrics."""

import json

import pytest
from pydantic import ValidationError

from reception.config import Settings
from reception.metrics import CallMetrics
from reception.notifications import LogNotifier, TwilioNotifier
from reception.services import DialoguePolicy, build_services
from reception.stores.memory import MemoryKeyedStore
from reception.tenants import TenantConfig, TenantDirectory


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestValidateStartup:
    def test_defaults_only_warn(self):
        warnings = make_settings().validate_startup()
        assert any("ADMIN_API_KEY" in w for w in warnings)
        assert any("Twilio" in w for w in warnings)
        assert any("GOOGLE_SERVICE_ACCOUNT_JSON" in w for w in warnings)

    def test_bad_hours(self):
        with pytest.raises(ValueError, match="OPEN_HOUR"):
            make_settings(open_hour=17, close_hour=9).validate_startup()

    def test_bad_business_days(self):
        with pytest.raises(ValueError, match="BUSINESS_DAYS"):
            make_settings(business_days=[7]).validate_startup()

    def test_unknown_timezone(self):
        with pytest.raises(ValueError, match="DEFAULT_TIMEZONE"):
            make_settings(default_timezone="Mars/Olympus").validate_startup()

    def test_bad_tenants_json(self):
        with pytest.raises(ValueError, match="TENANTS_JSON"):
            make_settings(tenants_json="[{").validate_startup()


class TestTenants:
    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            TenantConfig(key="x", timezone="Nowhere/Land")

    def test_lookup_by_dialled_number(self):
        default = TenantConfig(key="default")
        sparky = TenantConfig(key="sparky", phone_numbers=["+61 3 9000 1111"])
        directory = TenantDirectory(default, [sparky])

        assert directory.for_number("+61390001111").key == "sparky"
        assert directory.for_number("+61200000000").key == "default"
        assert directory.for_number(None).key == "default"
        assert directory.get("sparky") is sparky

    def test_from_settings(self):
        settings = make_settings(
            business_name="Acme Plumbing",
            twilio_phone_number="+61290000000",
            tenants_json=json.dumps([
                {"key": "sparky", "business_name": "Sparky Bros", "phone_numbers": ["+61390001111"],
                 "timezone": "Australia/Melbourne"},
            ]),
        )
        directory = TenantDirectory.from_settings(settings)

        assert directory.default.business_name == "Acme Plumbing"
        assert directory.for_number("+61290000000") is directory.default
        sparky = directory.for_number("+61390001111")
        assert sparky.sms_from == "+61390001111"
        assert sparky.zone.key == "Australia/Melbourne"
        assert len(directory.all()) == 2

    def test_hours_from_tenant(self):
        tenant = TenantConfig(key="x", open_hour=8, close_hour=16, business_days=[0, 1, 2])
        hours = tenant.hours
        assert (hours.open_hour, hours.close_hour, hours.days) == (8, 16, [0, 1, 2])


class TestBuildServices:
    def test_unconfigured_collaborators_degrade(self):
        services = build_services(make_settings())
        assert services.calendar is None
        assert services.store is None
        assert isinstance(services.notifier, LogNotifier)
        assert isinstance(services.confirmations._backend, MemoryKeyedStore)

    def test_twilio_notifier_when_configured(self):
        services = build_services(make_settings(twilio_account_sid="AC123", twilio_auth_token="tok"))
        assert isinstance(services.notifier, TwilioNotifier)

    def test_policy_from_settings(self):
        policy = DialoguePolicy.from_settings(make_settings(reject_threshold=4, slot_options=2))
        assert policy.reject_threshold == 4
        assert policy.slot_options == 2


class TestCallMetrics:
    def test_unknown_event(self):
        with pytest.raises(ValueError):
            CallMetrics().incr("acme", "parties")

    def test_snapshot_fills_every_event(self):
        metrics = CallMetrics()
        metrics.incr("acme", "calls")
        metrics.incr("acme", "calls")
        snapshot = metrics.snapshot()
        assert snapshot["acme"]["calls"] == 2
        assert snapshot["acme"]["bookings"] == 0

    async def test_flush(self):
        metrics = CallMetrics()
        metrics.incr("acme", "bookings")
        store = MemoryKeyedStore()

        assert await metrics.flush(store) == 1
        row = await store.get_by_key("metrics", "acme")
        assert row["counts"]["bookings"] == 1
        assert await metrics.flush(None) == 0
