"""Top-level handlers for inbound call turns, call status callbacks and texts.

This is the one place an unexpected error in a call is caught: the caller
hears an apology, the owner gets a system-error alert and a missed-job
alert, and the session is thrown away.
"""

from __future__ import annotations

import logging

from reception.models.call import TurnResult
from reception.notifications import missed_revenue_text, system_error_text
from reception.phones import normalize_phone, redact_pii
from reception.services import Services
from reception.session import IntakeSession, SessionRegistry, default_workflow
from reception.sms import handle_inbound_sms
from reception.tenants import TenantConfig
from reception.workflows.schema import IntakeWorkflowDef

log = logging.getLogger("reception.intake")

# Twilio CallStatus values that mean the call is over
FINAL_CALL_STATUSES = frozenset({"completed", "busy", "no-answer", "failed", "canceled"})


class IntakeService:
    """Routes webhook payloads to sessions and the confirmation correlator."""

    def __init__(
        self,
        services: Services,
        registry: SessionRegistry | None = None,
        workflow: IntakeWorkflowDef | None = None,
    ) -> None:
        self.services = services
        self.registry = registry or SessionRegistry()
        self.workflow = workflow or default_workflow()

    async def handle_voice_turn(
        self,
        call_id: str,
        from_number: str,
        to_number: str,
        transcript: str | None,
        confidence: float | None = None,
    ) -> TurnResult:
        session = self.registry.get(call_id)
        tenant = session.tenant if session else self.services.tenants.for_number(to_number)
        try:
            if session is None:
                session = IntakeSession(tenant, call_id, from_number, self.services, self.workflow)
                self.registry.add(session)
                self.services.metrics.incr(tenant.key, "calls")
                log.info("New call %s from %s for %s", call_id, redact_pii(from_number), tenant.key)

            result = await session.handle_turn(transcript, confidence)
        except Exception:
            log.exception("Unhandled error in call %s", call_id)
            self.registry.close(call_id)
            step = session.current_step if session else "start"
            return await self._system_error(tenant, from_number, step)

        if session.is_done:
            self.registry.close(call_id)
        return result

    async def handle_call_status(self, call_id: str, status: str) -> None:
        """A final call status closes the session; unfinished calls count as hangups."""
        if status not in FINAL_CALL_STATUSES:
            return
        session = self.registry.close(call_id)
        if session is None or session.is_done:
            return
        try:
            await session.hangup()
        except Exception:
            log.exception("Hangup handling failed for call %s", call_id)

    async def handle_sms(
        self,
        from_number: str,
        to_number: str,
        body: str,
        media_urls: list[str] | None = None,
    ) -> str:
        tenant = self.services.tenants.for_number(to_number)
        return await handle_inbound_sms(self.services, tenant, from_number, body, media_urls or [])

    async def _system_error(self, tenant: TenantConfig, from_number: str, step: str) -> TurnResult:
        caller = normalize_phone(from_number) or "unknown caller"
        try:
            self.services.metrics.incr(tenant.key, "system_errors")
            await self.services.notifier.notify_owner(tenant, system_error_text(caller, step))
            await self.services.notifier.notify_owner(
                tenant, missed_revenue_text("system error", caller, {"step": step}),
            )
        except Exception:
            log.exception("Failed to send system error alerts for %s", redact_pii(caller))
        message = self.workflow.terminal_messages.get("system_error") or self.workflow.exit_message
        return TurnResult(prompt=message, expect_more_input=False)
