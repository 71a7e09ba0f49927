"""Tests for pending confirmations and the inbound SMS correlator."""

from datetime import timedelta

import pytest

from reception.confirmations import TABLE, ConfirmationStore, confirmation_key
from reception.models.booking import PendingConfirmation
from reception.sms import NOTES_TABLE, handle_inbound_sms, reply_kind

from conftest import NOW, at


def pending(created_at=NOW, start=None, **kwargs):
    fields = dict(
        tenant_key="acme",
        phone="+61400000000",
        name="Jane",
        job="Leaking tap",
        address="12 Smith St",
        when="Thursday 22 October at 3pm",
        timezone="Australia/Sydney",
        start=start or at(22, 15),
        created_at=created_at,
    )
    fields.update(kwargs)
    return PendingConfirmation(**fields)


class TestConfirmationKey:
    def test_normalizes_phone(self):
        assert confirmation_key("acme", "+61 400 000 000") == "acme:+61400000000"

    def test_same_key_from_both_channels(self):
        assert confirmation_key("acme", "+61-400-000-000") == confirmation_key("acme", "+61400000000")


class TestConfirmationStore:
    async def test_put_then_get(self, services):
        store = services.confirmations
        assert await store.put(pending()) is True
        record = await store.get("acme", "+61 400 000 000")
        assert record.name == "Jane"
        assert record.expires_at == at(22, 15)

    async def test_newer_booking_replaces_older(self, services, clock):
        store = services.confirmations
        await store.put(pending(job="Leaking tap"))
        clock.advance(minutes=5)
        await store.put(pending(created_at=clock(), job="Blocked drain"))
        record = await store.get("acme", "+61400000000")
        assert record.job == "Blocked drain"

    async def test_expires_after_ttl(self, services, clock):
        store = services.confirmations
        await store.put(pending(start=at(30, 9)))
        assert store.expiry_for(pending(start=at(30, 9))) == NOW + timedelta(hours=72)

        clock.advance(hours=72)
        assert await store.get("acme", "+61400000000") is None

    async def test_expires_at_appointment_start(self, services, clock):
        store = services.confirmations
        await store.put(pending(start=at(21, 12)))
        clock.advance(hours=2)
        assert await store.get("acme", "+61400000000") is None

    async def test_expired_record_is_removed(self, store, clock):
        confirmations = ConfirmationStore(store, ttl=timedelta(hours=1), clock=clock)
        await confirmations.put(pending())
        clock.advance(hours=2)
        await confirmations.get("acme", "+61400000000")
        assert await store.get_by_key(TABLE, "acme:+61400000000") is None

    async def test_late_write_after_resolution_is_ignored(self, services, clock):
        store = services.confirmations
        record = pending()
        await store.put(record)
        clock.advance(minutes=1)
        await store.delete("acme", "+61400000000", resolution="confirmed")

        assert await store.put(pending(created_at=NOW)) is False
        assert await store.get("acme", "+61400000000") is None

    async def test_new_booking_after_resolution_is_accepted(self, services, clock):
        store = services.confirmations
        await store.put(pending())
        clock.advance(minutes=1)
        await store.delete("acme", "+61400000000")
        clock.advance(minutes=1)
        assert await store.put(pending(created_at=clock())) is True


class TestReplyKind:
    @pytest.mark.parametrize("body, expected", [
        ("Y", "yes"),
        ("yes thanks", "yes"),
        ("Yep!", "yes"),
        ("N", "no"),
        ("no sorry can't make it", "no"),
        ("reschedule please", "no"),
        ("No worries, see you then", "yes"),
        ("No problem, thanks", "yes"),
        ("no worries, reschedule please", "no"),
        ("what time again?", None),
        ("", None),
    ])
    def test_first_word(self, body, expected):
        assert reply_kind(body) == expected


class TestInboundSms:
    async def test_yes_confirms_once(self, services, tenant, notifier):
        await services.confirmations.put(pending())

        reply = await handle_inbound_sms(services, tenant, "+61400000000", "Y", [])
        assert reply == "Thanks Jane, you're confirmed for Thursday 22 October at 3pm. See you then!"
        assert notifier.owner == ["Confirmed: Jane for Thursday 22 October at 3pm at 12 Smith St."]

        reply = await handle_inbound_sms(services, tenant, "+61400000000", "Y", [])
        assert reply.startswith("Thanks for your message.")
        assert len(notifier.owner) == 1
        assert services.metrics.snapshot()["acme"]["confirmations"] == 1

    async def test_no_asks_owner_to_reschedule(self, services, tenant, notifier):
        await services.confirmations.put(pending())

        reply = await handle_inbound_sms(services, tenant, "+61400000000", "No", [])
        assert reply == "No worries. We'll be in touch to find another time."
        assert notifier.owner[0].startswith("Reschedule needed: Jane")
        assert await services.confirmations.get("acme", "+61400000000") is None

    async def test_unclear_reply_keeps_record(self, services, tenant):
        await services.confirmations.put(pending())

        reply = await handle_inbound_sms(services, tenant, "+61400000000", "what time?", [])
        assert reply == "Please reply Y to confirm your booking for Thursday 22 October at 3pm, or N to reschedule."
        assert await services.confirmations.get("acme", "+61400000000") is not None

    async def test_no_pending_booking(self, services, tenant):
        reply = await handle_inbound_sms(services, tenant, "+61499999999", "Y", [])
        assert reply == "Thanks for your message. Acme Plumbing will get back to you soon."

    async def test_photos_are_kept_and_forwarded(self, services, tenant, notifier, store):
        url = "https://api.twilio.com/media/ME1"
        reply = await handle_inbound_sms(services, tenant, "+61400000000", "the leak", [url])

        assert reply == "Thanks, we've passed your photos on to the team."
        assert url in notifier.owner[0]
        note = await store.get_by_key(NOTES_TABLE, f"acme:+61400000000:{NOW.isoformat()}")
        assert note["media_urls"] == [url]
        assert note["body"] == "the leak"
