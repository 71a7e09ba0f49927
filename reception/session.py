"""Per-call intake session: drives the intake workflow one caller turn at a time.

Each inbound call gets an IntakeSession that:
  1. Holds the CallState (captured answers, proposed slots, counters)
  2. Tracks the current state of the data-driven intake workflow
  3. Validates each transcript and replays the last prompt on a reject
  4. Runs the time step against the availability engine
  5. Checks for a duplicate booking on entering confirm
  6. Commits the booking, with every side effect best-effort

Typical lifecycle::

    session = IntakeSession(tenant, call_id="CA...", from_number="+61...", services=services)
    result = await session.handle_turn("")          # greeting
    while result.expect_more_input:
        result = await session.handle_turn(transcript, confidence)
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Any, Awaitable, Callable

from reception.availability import within_tolerance
from reception.calendar_providers.base import CalendarEvent, insert_event_with_retry
from reception.confirmations import confirmation_key
from reception.exceptions import CalendarError
from reception.intents import AFFIRMING_PHRASES, classify
from reception.models.booking import PendingConfirmation
from reception.models.call import CallState, Intent, Step, TurnResult
from reception.notifications import (
    booking_text,
    cancel_request_text,
    customer_confirmation_text,
    missed_revenue_text,
    quiet_call_text,
    quote_request_text,
)
from reception.phones import normalize_phone, redact_pii
from reception.services import Services
from reception.tenants import TenantConfig
from reception.timeparse import TimeRequest, format_when, normalize_time
from reception.workflows.loader import load_workflow_jsonl
from reception.workflows.schema import IntakeStateDef, IntakeWorkflowDef

log = logging.getLogger("reception.session")

QUOTE_LEADS_TABLE = "quote_leads"

# Single-word utterances that carry no answer on their own
FILLER_WORDS = frozenset({
    "um", "umm", "uh", "uhh", "er", "erm", "ah", "hmm", "mm", "hello", "hi",
    "hey", "yes", "yeah", "yep", "no", "nope", "nah", "ok", "okay", "sure",
    "right", "so", "well", "what", "sorry", "pardon", "thanks", "quote",
    "booking", "appointment", "service", "emergency", "cancel", "reschedule",
    "repair", "install", "installation", "plumbing", "electrical", "plumber",
    "electrician", "none", "nothing",
})

_ORDINAL_WORDS = {"first": 0, "1st": 0, "second": 1, "2nd": 1, "third": 2, "3rd": 2, "last": -1}
_NUMBER_CHOICES = {"one": 0, "1": 0, "two": 1, "2": 1, "three": 2, "3": 2}
_PICK_NOISE = frozenset({
    "the", "number", "option", "slot", "please", "um", "uh", "er", "that", "oh", "ok", "okay",
})

_UPDATE_WORDS = ("update", "replace", "change it", "change that", "move it", "instead")
_NO_WORDS = ("no", "nope", "nah", "not really", "another time", "other time", "different time", "wrong")
_YES_WORDS = (
    "yes", "yeah", "yep", "yup", "sure", "correct", "confirm", "ok", "okay", "perfect",
    "great", "sounds good", "go ahead", "lock it in", "book it", "book this",
    "that works", "that's fine", "as well", "both", "please do",
)

_NAME_LEADINS = re.compile(r"^(?:my name is|my name's|the name is|name's|it's|its|this is|i'm|i am)\s+", re.I)
_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

_DEFAULT_WORKFLOW: IntakeWorkflowDef | None = None


def default_workflow() -> IntakeWorkflowDef:
    global _DEFAULT_WORKFLOW
    if _DEFAULT_WORKFLOW is None:
        _DEFAULT_WORKFLOW = load_workflow_jsonl()
    return _DEFAULT_WORKFLOW


def _words(text: str) -> list[str]:
    return re.findall(r"[a-z0-9']+", text.lower())


def _has_phrase(padded: str, phrase: str) -> bool:
    return f" {phrase} " in padded


def pick_index(text: str, count: int) -> int | None:
    """Map "the second one", "number 2" or "last" to a slot index."""
    tokens = _words(text)
    index = None
    for token in tokens:
        if token in _ORDINAL_WORDS:
            index = _ORDINAL_WORDS[token]
            break
    else:
        rest = [t for t in tokens if t not in _PICK_NOISE]
        if len(rest) == 1 and rest[0] in _NUMBER_CHOICES:
            index = _NUMBER_CHOICES[rest[0]]

    if index is None or count == 0:
        return None
    if index < 0:
        return count - 1
    return index if index < count else None


def confirm_answer(text: str, has_duplicate: bool) -> str | None:
    """Classify a confirm-step answer as "update", "no", "yes" or None."""
    padded = " " + " ".join(_words(text)) + " "
    affirming = False
    for phrase in AFFIRMING_PHRASES:
        if _has_phrase(padded, phrase):
            affirming = True
            padded = padded.replace(f" {phrase} ", " ")

    if has_duplicate and any(_has_phrase(padded, w) for w in _UPDATE_WORDS):
        return "update"
    if any(_has_phrase(padded, w) for w in _NO_WORDS):
        return "no"
    if affirming or any(_has_phrase(padded, w) for w in _YES_WORDS):
        return "yes"
    return None


def clean_name(text: str) -> str:
    name = _NAME_LEADINS.sub("", text.strip()).strip(" .,!")
    return name or text.strip()


def _slot_phrase(slots: list[datetime]) -> str:
    spoken = [format_when(s) for s in slots]
    if len(spoken) == 1:
        return f"is {spoken[0]}"
    if len(spoken) == 2:
        return f"are {spoken[0]} or {spoken[1]}"
    return "are " + ", ".join(spoken[:-1]) + f", or {spoken[-1]}"


class IntakeSession:
    """One phone call's intake conversation."""

    def __init__(
        self,
        tenant: TenantConfig,
        call_id: str,
        from_number: str,
        services: Services,
        workflow: IntakeWorkflowDef | None = None,
    ) -> None:
        self.tenant = tenant
        self._services = services
        self._policy = services.policy
        self._workflow = workflow or default_workflow()
        self._engine = services.availability_for(tenant)
        self._duplicates = services.duplicates_for(tenant)

        self.state = CallState(
            call_id=call_id,
            tenant_key=tenant.key,
            from_number=normalize_phone(from_number),
            step=Step(self._workflow.initial_state),
        )

        self._greeted = False
        self._done = False
        self._replace_duplicate = False
        self.outcome: str | None = None
        self.started_at = services.clock()

        self._handlers: dict[Step, Callable[[IntakeStateDef, str], Awaitable[TurnResult]]] = {
            Step.INTENT: self._on_intent,
            Step.JOB: self._on_capture,
            Step.ADDRESS: self._on_capture,
            Step.NAME: self._on_capture,
            Step.ACCESS: self._on_capture,
            Step.TIME: self._on_time,
            Step.PICK_SLOT: self._on_pick_slot,
            Step.CONFIRM: self._on_confirm,
        }

    # ── Public API ────────────────────────────────────────────

    @property
    def call_id(self) -> str:
        return self.state.call_id

    @property
    def is_done(self) -> bool:
        return self._done

    @property
    def current_step(self) -> str:
        return self.state.step.value

    def greeting(self) -> TurnResult:
        self._greeted = True
        return self._ask(self._render(self._workflow.greeting or self._current_state().prompt))

    async def handle_turn(self, transcript: str | None, confidence: float | None = None) -> TurnResult:
        """Process one caller turn and return what to say next."""
        if self._done:
            return TurnResult(prompt=self._render(self._workflow.exit_message), expect_more_input=False)

        text = (transcript or "").strip()
        if not text:
            if not self._greeted:
                return self.greeting()
            return await self._on_silence()

        self._greeted = True
        state_def = self._current_state()
        log.info("Call %s step=%s heard %r (confidence=%s)",
                 self.call_id, state_def.id, text, confidence)

        if not self._is_valid(state_def, text, confidence):
            return await self._reject(state_def)
        return await self._handlers[self.state.step](state_def, text)

    async def hangup(self) -> None:
        """The caller hung up before the dialogue finished."""
        if self._done:
            return
        self._done = True
        self.outcome = "hangup"
        if self.state.intent is not None:
            await self._missed_revenue("caller hung up")
        log.info("Call %s hung up at step %s", self.call_id, self.current_step)

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tenant": self.tenant.key,
            "caller": redact_pii(self.state.from_number),
            "step": self.current_step,
            "is_done": self._done,
            "outcome": self.outcome,
            "started_at": self.started_at.isoformat(),
            "state": self.state.model_dump(mode="json", exclude={"from_number"}),
        }

    # ── Internal: helpers ─────────────────────────────────────

    def _current_state(self) -> IntakeStateDef:
        return self._workflow.states[self.state.step.value]

    def _caller(self) -> str:
        return self.state.from_number or "unknown caller"

    def _render(self, template: str) -> str:
        s = self.state
        values = {
            "business_name": self.tenant.business_name,
            "name": s.name or "",
            "job": s.job or "the job",
            "address": s.address or "your place",
            "when": format_when(s.booked_start.astimezone(self.tenant.zone)) if s.booked_start else "",
            "duplicate_when": (
                format_when(s.duplicate_event.when.astimezone(self.tenant.zone))
                if s.duplicate_event else ""
            ),
            "slot_options": _slot_phrase(s.proposed_slots) if s.proposed_slots else "",
        }
        rendered = _PLACEHOLDER.sub(lambda m: values.get(m.group(1), ""), template)
        return re.sub(r"\s+([.,!?])", r"\1", re.sub(r"\s{2,}", " ", rendered)).strip()

    def _ask(self, prompt: str, remember: bool = True) -> TurnResult:
        if remember:
            self.state.last_prompt = prompt
        return TurnResult(prompt=prompt)

    def _prompt_for(self, state_def: IntakeStateDef) -> str:
        variants = []
        if state_def.id == Step.CONFIRM.value and self.state.duplicate_event is not None:
            variants.append("duplicate")
        if self.state.intent is not None:
            variants.append(self.state.intent.value)
        for key in variants:
            if key in state_def.prompt_variants:
                return state_def.prompt_variants[key]
        return state_def.prompt

    def _details(self) -> dict[str, str | None]:
        s = self.state
        return {
            "intent": s.intent.value if s.intent else None,
            "job": s.job,
            "address": s.address,
            "name": s.name,
            "time": s.spoken_time,
        }

    # ── Internal: validation, rejects and silence ─────────────

    def _is_valid(self, state_def: IntakeStateDef, text: str, confidence: float | None) -> bool:
        min_chars = 1 if state_def.skip_filler_check else 2
        if sum(c.isalnum() for c in text) < min_chars:
            return False

        words = _words(text)
        if len(words) == 1 and not state_def.skip_filler_check:
            word = words[0]
            if word in FILLER_WORDS and word not in state_def.one_word_answers:
                return False

        if (
            state_def.check_confidence
            and confidence is not None
            and len(words) <= 2
            and confidence < self._policy.low_confidence_threshold
        ):
            return False
        return True

    async def _reject(self, state_def: IntakeStateDef) -> TurnResult:
        counter = state_def.reject_counter
        if counter:
            count = getattr(self.state.reject_counts, counter) + 1
            setattr(self.state.reject_counts, counter, count)
            log.info("Call %s %s reject %d/%d", self.call_id, counter, count, self._policy.reject_threshold)
            if count > self._policy.reject_threshold:
                return await self._finish("escalated", reason=f"could not get {counter}")
        return self._ask(f"{self._workflow.reject_prefix} {self.state.last_prompt}", remember=False)

    async def _on_silence(self) -> TurnResult:
        self.state.silent_tries += 1
        tries = self.state.silent_tries
        log.info("Call %s silent turn %d", self.call_id, tries)

        if tries >= self._policy.silence_escalate_threshold:
            return await self._finish("escalated", reason="caller went silent")

        if tries >= self._policy.silence_alert_threshold and not self.state.quiet_alert_sent:
            self.state.quiet_alert_sent = True
            self._services.metrics.incr(self.tenant.key, "quiet_calls")
            await self._services.notifier.notify_owner(self.tenant, quiet_call_text(self._caller()))

        return self._ask(f"{self._workflow.silence_prefix} {self.state.last_prompt}", remember=False)

    # ── Internal: transition routing ──────────────────────────

    def _resolve_target(self, target: str) -> tuple[str, str]:
        """Parse a transition target string.

        Returns (state_id, message_or_terminal).
        - "stateId"            -> ("stateId", "")
        - "stateId:override"   -> ("stateId", "override")
        - "exit"               -> ("", "")
        - "exit:booked"        -> ("", "booked")
        """
        if target == "exit" or target.startswith("exit:"):
            return "", target.partition(":")[2]
        state_id, _, message = target.partition(":")
        return state_id, message

    def _target_for(self, state_def: IntakeStateDef, outcome: str) -> str:
        target = state_def.transitions.get(outcome) or state_def.transitions.get("*")
        if not target:
            raise ValueError(f"State {state_def.id!r} has no transition for {outcome!r}")
        return target

    async def _advance(self, outcome: str) -> TurnResult:
        state_def = self._current_state()
        state_id, message = self._resolve_target(self._target_for(state_def, outcome))

        if not state_id:
            log.info("FSM exit from %s via '%s': %s", state_def.id, outcome, message or "exit")
            return await self._finish(message)

        self.state.step = Step(state_id)
        log.info("FSM advance: %s -> %s (outcome: %s)", state_def.id, state_id, outcome)
        return await self._enter(self._workflow.states[state_id], message)

    async def _enter(self, state_def: IntakeStateDef, override: str = "") -> TurnResult:
        if state_def.id == Step.CONFIRM.value:
            await self._check_duplicate()
        return self._ask(self._render(override or self._prompt_for(state_def)))

    def _outcome_for_intent(self) -> str:
        return self.state.intent.value if self.state.intent else "*"

    # ── Internal: step handlers ───────────────────────────────

    async def _on_intent(self, state_def: IntakeStateDef, text: str) -> TurnResult:
        intent = classify(text)
        self.state.first_utterance = text
        self.state.intent = intent
        if intent is Intent.EMERGENCY:
            # The caller already described the problem
            self.state.job = text
        log.info("Call %s intent %s", self.call_id, intent.value)
        return await self._advance(intent.value)

    async def _on_capture(self, state_def: IntakeStateDef, text: str) -> TurnResult:
        step = self.state.step
        if step is Step.JOB:
            self.state.job = text
        elif step is Step.ADDRESS:
            self.state.address = text
        elif step is Step.NAME:
            self.state.name = clean_name(text)
        elif step is Step.ACCESS:
            self.state.access_note = text
        return await self._advance(self._outcome_for_intent())

    async def _on_time(self, state_def: IntakeStateDef, text: str) -> TurnResult:
        tz = self.tenant.zone
        now = self._services.clock().astimezone(tz)
        self.state.spoken_time = text

        request = normalize_time(text, tz, now)
        if request is None:
            log.info("Call %s time %r not understood, offering the next opening", self.call_id, text)
            request = TimeRequest(start=now, asap=True)

        try:
            slots = await self._engine.next_available_slots(
                request.start, self._policy.slot_options, now=now,
            )
        except CalendarError as e:
            log.warning("Call %s availability lookup failed: %s", self.call_id, e)
            return await self._advance("calendar_error")

        if not slots:
            return await self._advance("unavailable")

        first = slots[0]
        if self._accepts(request, first):
            self.state.booked_start = first
            self.state.proposed_slots = []
            return await self._advance("accepted")

        self.state.booked_start = None
        self.state.proposed_slots = slots
        return await self._advance("alternatives")

    def _accepts(self, request: TimeRequest, first: datetime) -> bool:
        if request.asap:
            return True
        if request.date_only:
            tz = self.tenant.zone
            return first.astimezone(tz).date() == request.start.astimezone(tz).date()
        return within_tolerance(first, request.start, self._policy.accept_tolerance_minutes)

    async def _on_pick_slot(self, state_def: IntakeStateDef, text: str) -> TurnResult:
        slots = self.state.proposed_slots
        index = pick_index(text, len(slots))
        if index is not None:
            self.state.booked_start = slots[index]
            self.state.proposed_slots = []
            return await self._advance("picked")

        tz = self.tenant.zone
        if normalize_time(text, tz, self._services.clock().astimezone(tz)) is not None:
            # A fresh time request goes straight back through the time step
            state_id, _ = self._resolve_target(self._target_for(state_def, "new_time"))
            self.state.step = Step(state_id)
            log.info("FSM advance: %s -> %s (outcome: new_time)", state_def.id, state_id)
            return await self._on_time(self._current_state(), text)

        return await self._reject(state_def)

    async def _on_confirm(self, state_def: IntakeStateDef, text: str) -> TurnResult:
        answer = confirm_answer(text, self.state.duplicate_event is not None)
        if answer is None:
            return await self._reject(state_def)

        if answer == "no":
            self.state.booked_start = None
            self.state.proposed_slots = []
            self.state.duplicate_event = None
            return await self._advance("no")

        self._replace_duplicate = answer == "update"
        return await self._advance(answer)

    async def _check_duplicate(self) -> None:
        self.state.duplicate_event = None
        if self.state.booked_start is None:
            return
        self.state.duplicate_event = await self._duplicates.find_duplicate(
            self.state.name, self.state.address, self.state.booked_start,
        )

    # ── Internal: terminal outcomes ───────────────────────────

    async def _finish(self, terminal: str, reason: str = "") -> TurnResult:
        if terminal == "booked":
            terminal = await self._commit()
        elif terminal == "booked_manual":
            await self._manual_follow_up()
        elif terminal == "quote_request":
            await self._save_quote_lead()
        elif terminal == "cancel_request":
            self._services.metrics.incr(self.tenant.key, "cancel_requests")
            await self._services.notifier.notify_owner(self.tenant, cancel_request_text(
                self.state.name or "caller", self._caller(), self.state.first_utterance,
            ))
        elif terminal == "no_availability":
            await self._missed_revenue("no availability in the next two weeks")
        elif terminal == "escalated":
            self._services.metrics.incr(self.tenant.key, "escalations")
            await self._missed_revenue(reason or "escalated")

        self._done = True
        self.outcome = terminal or "exit"
        message = self._workflow.terminal_messages.get(terminal) or self._workflow.exit_message
        log.info("Call %s finished: %s", self.call_id, self.outcome)
        return TurnResult(prompt=self._render(message), expect_more_input=False)

    async def _missed_revenue(self, reason: str) -> None:
        await self._services.notifier.notify_owner(
            self.tenant, missed_revenue_text(reason, self._caller(), self._details()),
        )

    async def _commit(self) -> str:
        """Record, write and announce the booking. Returns the terminal message name."""
        s = self.state
        tenant = self.tenant
        calendar = self._services.calendar
        start = s.booked_start
        when = format_when(start.astimezone(tenant.zone))

        if self._replace_duplicate and s.duplicate_event is not None and calendar is not None:
            try:
                await calendar.cancel_event(tenant.calendar_id, s.duplicate_event.id)
            except Exception:
                log.exception("Call %s failed to remove duplicate %s", self.call_id, s.duplicate_event.id)

        manual = calendar is None
        if calendar is not None:
            event = CalendarEvent(
                summary=f"{(s.job or 'Job')[:60]} - {s.name or 'caller'}",
                start=start,
                end=start + self._engine.duration,
                location=s.address or "",
                description="\n".join(line for line in (
                    f"Caller: {self._caller()}",
                    f"Name: {s.name}" if s.name else "",
                    f"Job: {s.job}" if s.job else "",
                    f"Address: {s.address}" if s.address else "",
                    f"Access: {s.access_note}" if s.access_note else "",
                    f"Requested: {s.spoken_time}" if s.spoken_time else "",
                    f"Intent: {s.intent.value}" if s.intent else "",
                ) if line),
            )
            try:
                created = await insert_event_with_retry(
                    calendar, tenant.calendar_id, event,
                    attempts=self._policy.calendar_insert_attempts,
                    base_delay=self._policy.calendar_retry_base_delay,
                )
                s.event_id = created.get("event_id")
            except CalendarError as e:
                log.error("Call %s booking not written to calendar: %s", self.call_id, e)
                manual = True

        record = PendingConfirmation(
            tenant_key=tenant.key,
            phone=s.from_number,
            name=s.name or "",
            job=s.job or "",
            address=s.address or "",
            when=when,
            timezone=tenant.timezone,
            start=start,
            event_id=s.event_id,
            created_at=self._services.clock(),
        )
        try:
            await self._services.confirmations.put(record)
        except Exception:
            log.exception("Call %s failed to store pending confirmation", self.call_id)

        await self._services.notifier.notify_owner(tenant, booking_text(
            s.name or "caller", s.job or "job", s.address or "", when, self._caller(), manual=manual,
        ))
        if manual:
            self._services.metrics.incr(tenant.key, "manual_bookings")
            return "booked_manual"

        self._services.metrics.incr(tenant.key, "bookings")
        await self._services.notifier.notify_customer(
            tenant, s.from_number, customer_confirmation_text(tenant.business_name, when, s.address or ""),
        )
        return "booked"

    async def _manual_follow_up(self) -> None:
        s = self.state
        self._services.metrics.incr(self.tenant.key, "manual_bookings")
        await self._services.notifier.notify_owner(self.tenant, booking_text(
            s.name or "caller", s.job or "job", s.address or "",
            f"requested '{s.spoken_time or 'asap'}'", self._caller(), manual=True,
        ))

    async def _save_quote_lead(self) -> None:
        s = self.state
        self._services.metrics.incr(self.tenant.key, "quotes")
        store = self._services.store
        if store is not None:
            try:
                await store.upsert(QUOTE_LEADS_TABLE, confirmation_key(self.tenant.key, s.from_number), {
                    "tenant_key": self.tenant.key,
                    "phone": s.from_number,
                    "name": s.name,
                    "job": s.job,
                    "address": s.address,
                    "access_note": s.access_note,
                    "first_utterance": s.first_utterance,
                    "created_at": self._services.clock().isoformat(),
                })
            except Exception:
                log.exception("Call %s failed to save quote lead", self.call_id)
        await self._services.notifier.notify_owner(self.tenant, quote_request_text(
            s.name or "caller", self._caller(), s.job or "", s.address or "", s.access_note or "",
        ))


# ── Session registry ─────────────────────────────────────────────

class SessionRegistry:
    """Live sessions by call id, with idle expiry.

    Sessions are removed explicitly when a call ends, and any session idle
    for longer than ``ttl_seconds`` is dropped on the next access.
    """

    def __init__(self, ttl_seconds: float = 1800, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, tuple[IntakeSession, float]] = {}

    def prune(self) -> int:
        cutoff = self._clock() - self._ttl
        expired = [cid for cid, (_, seen) in self._sessions.items() if seen < cutoff]
        for call_id in expired:
            del self._sessions[call_id]
        if expired:
            log.info("Expired %d idle session(s)", len(expired))
        return len(expired)

    def add(self, session: IntakeSession) -> None:
        self.prune()
        self._sessions[session.call_id] = (session, self._clock())
        log.info("Session registered: %s", session.call_id)

    def get(self, call_id: str) -> IntakeSession | None:
        self.prune()
        entry = self._sessions.get(call_id)
        if entry is None:
            return None
        session = entry[0]
        self._sessions[call_id] = (session, self._clock())
        return session

    def close(self, call_id: str) -> IntakeSession | None:
        entry = self._sessions.pop(call_id, None)
        if entry is not None:
            log.info("Session closed: %s", call_id)
            return entry[0]
        return None

    def all(self) -> list[IntakeSession]:
        self.prune()
        return [session for session, _ in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)
