"""Tests for IntakeSession — the per-call intake dialogue."""

from datetime import timedelta

import pytest

from reception.calendar_providers.base import BusyInterval, CalendarEvent
from reception.models.call import Intent, Step
from reception.session import (
    QUOTE_LEADS_TABLE,
    SessionRegistry,
    clean_name,
    confirm_answer,
    pick_index,
)

from conftest import NOW, at


async def talk(session, *turns):
    """Feed each turn in order and return the last result."""
    result = None
    for turn in turns:
        result = await session.handle_turn(turn)
    return result


async def reach_time_step(session):
    return await talk(
        session,
        "",
        "I need a tap fixed",
        "leaking tap in the kitchen",
        "12 Smith Street Newtown",
        "Jane Smith",
        "gate code 1234",
    )


class TestHelpers:
    @pytest.mark.parametrize("text, expected", [
        ("the second one", 1),
        ("number 2", 1),
        ("first", 0),
        ("the last one please", 2),
        ("three", 2),
        ("um", None),
        ("the fourth", None),
    ])
    def test_pick_index(self, text, expected):
        assert pick_index(text, 3) == expected

    def test_pick_index_out_of_range(self):
        assert pick_index("third", 2) is None

    @pytest.mark.parametrize("text, has_dup, expected", [
        ("yes please", False, "yes"),
        ("yep lock it in", False, "yes"),
        ("no", False, "no"),
        ("nah another time", False, "no"),
        ("update it", True, "update"),
        ("update it", False, None),
        ("book this as well", True, "yes"),
        ("hmm", False, None),
        ("yeah no worries", False, "yes"),
        ("yes no problem", False, "yes"),
        ("yep no dramas, book it", False, "yes"),
        ("no worries but another time", False, "no"),
    ])
    def test_confirm_answer(self, text, has_dup, expected):
        assert confirm_answer(text, has_dup) == expected

    def test_clean_name(self):
        assert clean_name("My name is Jane Smith.") == "Jane Smith"
        assert clean_name("Jane") == "Jane"


class TestGreetingAndIntent:
    async def test_first_empty_turn_is_the_greeting(self, make_session):
        session = make_session()
        result = await session.handle_turn("")
        assert "Acme Plumbing" in result.prompt
        assert result.expect_more_input
        assert session.state.silent_tries == 0

    async def test_emergency_skips_to_address(self, make_session):
        session = make_session()
        result = await talk(session, "", "my pipe burst now")
        assert session.state.step is Step.ADDRESS
        assert session.state.intent is Intent.EMERGENCY
        assert session.state.job == "my pipe burst now"
        assert "get someone out" in result.prompt

    async def test_new_booking_asks_for_job(self, make_session):
        session = make_session()
        await talk(session, "", "I need a tap fixed")
        assert session.state.step is Step.JOB

    async def test_quote_uses_quote_prompt(self, make_session):
        session = make_session()
        result = await talk(session, "", "can I get a quote")
        assert session.state.step is Step.JOB
        assert "quote for" in result.prompt


class TestValidation:
    async def test_filler_is_rejected_with_replay(self, make_session):
        session = make_session()
        greeting = await session.handle_turn("")
        result = await session.handle_turn("um")
        assert result.prompt.startswith("Sorry, I didn't get that.")
        assert greeting.prompt in result.prompt
        assert session.state.step is Step.INTENT

    async def test_low_confidence_short_address_rejected(self, make_session):
        session = make_session()
        await talk(session, "", "my pipe burst now")
        result = await session.handle_turn("12 Smith", confidence=0.2)
        assert session.state.step is Step.ADDRESS
        assert session.state.reject_counts.address == 1
        assert result.prompt.startswith("Sorry")

    async def test_job_step_ignores_confidence(self, make_session):
        session = make_session()
        await talk(session, "", "I need a tap fixed")
        await session.handle_turn("leaking tap", confidence=0.2)
        assert session.state.step is Step.ADDRESS

    async def test_access_accepts_no(self, make_session):
        session = make_session()
        await talk(session, "", "I need a tap fixed", "leaking tap", "12 Smith Street Newtown", "Jane Smith")
        await session.handle_turn("no")
        assert session.state.step is Step.TIME
        assert session.state.access_note == "no"

    async def test_three_bad_addresses_escalate(self, make_session, notifier):
        session = make_session()
        await talk(session, "", "my pipe burst now")
        await session.handle_turn("um")
        await session.handle_turn("uh")
        result = await session.handle_turn("er")

        assert result.expect_more_input is False
        assert session.outcome == "escalated"
        assert any(text.startswith("Missed job (could not get address)") for text in notifier.owner)
        assert session.state.name is None


class TestSilence:
    async def test_quiet_alert_once_then_escalate(self, make_session, notifier, services):
        session = make_session()
        await session.handle_turn("")

        await session.handle_turn("")
        assert notifier.owner == []

        result = await session.handle_turn("")
        assert len(notifier.owner) == 1
        assert "gone quiet" in notifier.owner[0]
        assert result.prompt.startswith("Sorry, say that again")

        await session.handle_turn("")
        assert len(notifier.owner) == 1

        result = await session.handle_turn("")
        assert result.expect_more_input is False
        assert session.outcome == "escalated"
        assert services.metrics.snapshot()["acme"]["quiet_calls"] == 1


class TestScheduling:
    async def test_requested_time_free_goes_to_confirm(self, make_session):
        session = make_session()
        await reach_time_step(session)
        result = await session.handle_turn("3pm tomorrow")

        assert session.state.step is Step.CONFIRM
        assert session.state.booked_start == at(22, 15)
        assert "Thursday 22 October at 3pm" in result.prompt
        assert "12 Smith Street Newtown" in result.prompt

    async def test_first_slot_past_tolerance_offers_choices(self, make_session, calendar):
        calendar.busy = [BusyInterval(at(22, 14), at(22, 15, 5))]
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        # 15:00 conflicts, the sweep nudges to 15:15 which is outside tolerance
        assert session.state.step is Step.PICK_SLOT

    async def test_busy_time_offers_alternatives(self, make_session, calendar):
        calendar.busy = [BusyInterval(at(22, 15), at(22, 16))]
        session = make_session()
        await reach_time_step(session)
        result = await session.handle_turn("3pm tomorrow")

        assert session.state.step is Step.PICK_SLOT
        assert session.state.proposed_slots == [at(23, 7), at(23, 8, 15), at(23, 9, 30)]
        assert "Friday 23 October at 7am" in result.prompt
        assert session.state.booked_start is None

    async def test_pick_slot_by_ordinal(self, make_session, calendar):
        calendar.busy = [BusyInterval(at(22, 15), at(22, 16))]
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        await session.handle_turn("the second one")

        assert session.state.step is Step.CONFIRM
        assert session.state.booked_start == at(23, 8, 15)
        assert session.state.proposed_slots == []

    async def test_pick_slot_with_a_new_time(self, make_session, calendar):
        calendar.busy = [BusyInterval(at(22, 15), at(22, 16))]
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        await session.handle_turn("Monday at 10am")

        assert session.state.step is Step.CONFIRM
        assert session.state.booked_start == at(26, 10)

    async def test_unparsed_time_offers_next_opening(self, make_session):
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("whatever works for the team")
        assert session.state.step is Step.CONFIRM
        assert session.state.booked_start == NOW + timedelta(minutes=15)

    async def test_calendar_read_failure_ends_as_manual(self, make_session, calendar, notifier):
        calendar.fail_list_busy = True
        session = make_session()
        await reach_time_step(session)
        result = await session.handle_turn("3pm tomorrow")

        assert result.expect_more_input is False
        assert session.outcome == "booked_manual"
        assert any("manual confirmation" in text for text in notifier.owner)

    async def test_no_availability(self, make_session, calendar, notifier):
        calendar.busy = [BusyInterval(NOW, NOW + timedelta(days=30))]
        session = make_session()
        await reach_time_step(session)
        result = await session.handle_turn("3pm tomorrow")

        assert result.expect_more_input is False
        assert session.outcome == "no_availability"
        assert any(text.startswith("Missed job") for text in notifier.owner)


class TestConfirm:
    async def test_yes_books_and_texts_customer(self, make_session, calendar, notifier, services):
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        result = await session.handle_turn("yes please")

        assert result.expect_more_input is False
        assert session.outcome == "booked"
        assert len(calendar.created) == 1
        event = calendar.created[0]
        assert event.start == at(22, 15)
        assert event.end == at(22, 16)
        assert event.location == "12 Smith Street Newtown"
        assert "Access: gate code 1234" in event.description

        record = await services.confirmations.get("acme", "+61400000000")
        assert record.event_id == "evt1"
        assert record.when == "Thursday 22 October at 3pm"

        assert notifier.customer[0][0] == "+61400000000"
        assert "Reply Y" in notifier.customer[0][1]
        assert any(text.startswith("New booking") for text in notifier.owner)
        assert services.metrics.snapshot()["acme"]["bookings"] == 1

    async def test_no_worries_counts_as_yes(self, make_session, calendar):
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        await session.handle_turn("yeah no worries")

        assert session.outcome == "booked"
        assert len(calendar.created) == 1

    async def test_no_returns_to_time(self, make_session):
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        result = await session.handle_turn("no")

        assert session.state.step is Step.TIME
        assert session.state.booked_start is None
        assert result.prompt == "No worries, what other time would suit?"

    async def test_unclear_answer_replays_prompt(self, make_session):
        session = make_session()
        await reach_time_step(session)
        confirm = await session.handle_turn("3pm tomorrow")
        result = await session.handle_turn("hmm")
        assert session.state.step is Step.CONFIRM
        assert result.prompt.endswith(confirm.prompt)

    async def test_duplicate_update_replaces_event(self, make_session, calendar):
        calendar.events = [CalendarEvent(
            id="dup1",
            summary="Leaking tap - Jane Smith",
            location="12 Smith Street, Newtown",
            start=at(21, 13),
            end=at(21, 14),
        )]
        session = make_session()
        await reach_time_step(session)
        result = await session.handle_turn("3pm tomorrow")
        assert "update that booking" in result.prompt
        assert session.state.duplicate_event.id == "dup1"

        await session.handle_turn("update it")
        assert calendar.cancelled == ["dup1"]
        assert len(calendar.created) == 1
        assert session.outcome == "booked"

    async def test_duplicate_book_as_well_keeps_event(self, make_session, calendar):
        calendar.events = [CalendarEvent(
            id="dup1",
            summary="Leaking tap - Jane Smith",
            location="12 Smith Street Newtown",
            start=at(21, 13),
            end=at(21, 14),
        )]
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        await session.handle_turn("book this as well")
        assert calendar.cancelled == []
        assert len(calendar.created) == 1

    async def test_insert_failure_falls_back_to_manual(self, make_session, calendar, notifier, services):
        calendar.fail_creates = 5
        session = make_session()
        await reach_time_step(session)
        await session.handle_turn("3pm tomorrow")
        result = await session.handle_turn("yes")

        assert session.outcome == "booked_manual"
        assert "confirm the time" in result.prompt
        assert calendar.create_calls == services.policy.calendar_insert_attempts
        assert notifier.customer == []
        assert any(text.startswith("Booking needs manual confirmation") for text in notifier.owner)
        record = await services.confirmations.get("acme", "+61400000000")
        assert record is not None
        assert record.event_id is None


class TestOtherExits:
    async def test_quote_request(self, make_session, notifier, store):
        session = make_session()
        result = await talk(
            session,
            "",
            "can I get a quote",
            "a new timber deck",
            "12 Smith Street Newtown",
            "Jane Smith",
            "no",
        )
        assert result.expect_more_input is False
        assert session.outcome == "quote_request"
        lead = await store.get_by_key(QUOTE_LEADS_TABLE, "acme:+61400000000")
        assert lead["job"] == "a new timber deck"
        assert any(text.startswith("Quote request from Jane Smith") for text in notifier.owner)

    async def test_cancel_request(self, make_session, notifier):
        session = make_session()
        result = await talk(session, "", "I need to cancel my booking")
        assert "What name is the booking under" in result.prompt

        result = await session.handle_turn("Jane Smith")
        assert result.expect_more_input is False
        assert session.outcome == "cancel_request"
        assert "Thanks Jane Smith" in result.prompt
        assert any("cancel my booking" in text for text in notifier.owner)

    async def test_hangup_after_intent_alerts_owner(self, make_session, notifier):
        session = make_session()
        await talk(session, "", "my pipe burst now")
        await session.hangup()
        assert session.is_done
        assert session.outcome == "hangup"
        assert any("caller hung up" in text for text in notifier.owner)

    async def test_hangup_before_intent_is_quiet(self, make_session, notifier):
        session = make_session()
        await session.handle_turn("")
        await session.hangup()
        assert notifier.owner == []

    async def test_turn_after_finish_repeats_goodbye(self, make_session):
        session = make_session()
        await talk(session, "", "I need to cancel my booking", "Jane Smith")
        result = await session.handle_turn("hello?")
        assert result.expect_more_input is False
        assert "Goodbye" in result.prompt


class TestSessionRegistry:
    def test_add_get_close(self, make_session):
        registry = SessionRegistry()
        session = make_session("CA1")
        registry.add(session)
        assert registry.get("CA1") is session
        assert len(registry) == 1
        assert registry.close("CA1") is session
        assert registry.get("CA1") is None

    def test_idle_sessions_expire(self, make_session):
        now = [1000.0]
        registry = SessionRegistry(ttl_seconds=60, clock=lambda: now[0])
        registry.add(make_session("CA1"))
        registry.add(make_session("CA2"))

        now[0] += 45
        assert registry.get("CA2") is not None  # refreshes CA2
        now[0] += 30

        assert registry.get("CA1") is None
        assert registry.get("CA2") is not None
        assert [s.call_id for s in registry.all()] == ["CA2"]

    def test_to_dict_redacts_caller(self, make_session):
        data = make_session("CA1", "+61400123456").to_dict()
        assert data["caller"] == "+61***56"
        assert "from_number" not in data["state"]
