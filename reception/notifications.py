"""Outbound text messages to the business owner and the customer.

Notifications are fire-and-forget: a failed send is logged and swallowed,
never raised into the call or SMS flow.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial

from twilio.rest import Client

from reception.phones import redact_pii
from reception.tenants import TenantConfig

log = logging.getLogger("reception.notifications")


class Notifier(ABC):
    """Send a text to a tenant's owner or to one of its customers."""

    @abstractmethod
    async def notify_owner(self, tenant: TenantConfig, text: str) -> None:
        ...

    @abstractmethod
    async def notify_customer(self, tenant: TenantConfig, phone: str, text: str) -> None:
        ...


class LogNotifier(Notifier):
    """Used when Twilio is not configured: messages only reach the log."""

    async def notify_owner(self, tenant: TenantConfig, text: str) -> None:
        log.info("[owner %s] %s", tenant.key, text)

    async def notify_customer(self, tenant: TenantConfig, phone: str, text: str) -> None:
        log.info("[customer %s/%s] %s", tenant.key, redact_pii(phone), text)


class TwilioNotifier(Notifier):
    """Sends SMS through the Twilio REST API from the tenant's own number."""

    def __init__(self, account_sid: str, auth_token: str, client: Client | None = None) -> None:
        self._client = client or Client(account_sid, auth_token)

    async def _send(self, from_number: str, to_number: str, text: str) -> None:
        if not from_number or not to_number:
            log.warning("SMS skipped, missing number (from=%s to=%s): %s",
                        redact_pii(from_number), redact_pii(to_number), text)
            return
        loop = asyncio.get_running_loop()
        try:
            message = await loop.run_in_executor(
                None,
                partial(self._client.messages.create, body=text, from_=from_number, to=to_number),
            )
            log.info("SMS %s sent to %s", message.sid, redact_pii(to_number))
        except Exception as e:
            log.error("SMS to %s failed: %s", redact_pii(to_number), e)

    async def notify_owner(self, tenant: TenantConfig, text: str) -> None:
        await self._send(tenant.sms_from, tenant.owner_phone, text)

    async def notify_customer(self, tenant: TenantConfig, phone: str, text: str) -> None:
        await self._send(tenant.sms_from, phone, text)


# ── Message texts ─────────────────────────────────────────────────

def missed_revenue_text(reason: str, caller: str, details: dict[str, str | None]) -> str:
    filled = ", ".join(f"{k}: {v}" for k, v in details.items() if v)
    return f"Missed job ({reason}) from {caller}. Call them back. {filled}".strip()


def quiet_call_text(caller: str) -> str:
    return f"Heads up: a call from {caller} has gone quiet. They may need a call back."


def booking_text(name: str, job: str, address: str, when: str, caller: str, manual: bool) -> str:
    prefix = "Booking needs manual confirmation" if manual else "New booking"
    return f"{prefix}: {name} ({caller}), {job} at {address}, {when}."


def system_error_text(caller: str, step: str) -> str:
    return f"System error during a call from {caller} at step '{step}'. Please call them back."


def customer_confirmation_text(business_name: str, when: str, address: str) -> str:
    return (
        f"{business_name}: you're booked for {when} at {address}. "
        "Reply Y to confirm or N to reschedule."
    )


def quote_request_text(name: str, caller: str, job: str, address: str, access: str) -> str:
    text = f"Quote request from {name} ({caller}): {job} at {address}."
    if access:
        text += f" Access: {access}."
    return text


def cancel_request_text(name: str, caller: str, first_utterance: str) -> str:
    return f"Cancel/reschedule request from {name} ({caller}): \"{first_utterance}\". Please call them back."
