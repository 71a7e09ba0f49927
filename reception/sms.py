"""Inbound SMS: resolve a pending booking with a Y/N reply, keep photos as notes."""

from __future__ import annotations

import logging
import re

from reception.confirmations import confirmation_key
from reception.intents import AFFIRMING_PHRASES
from reception.phones import normalize_phone, redact_pii
from reception.services import Services
from reception.tenants import TenantConfig

log = logging.getLogger("reception.sms")

NOTES_TABLE = "customer_notes"

YES_REPLIES = frozenset({"y", "yes", "yep", "yeah", "yup", "confirm", "confirmed", "ok", "okay", "sure"})
NO_REPLIES = frozenset({"n", "no", "nope", "nah", "reschedule", "cancel", "change"})


def reply_kind(body: str) -> str | None:
    """Classify a reply as yes or no from its first word; None when it is neither.

    "No worries" and similar are agreement, not a decline: they are set
    aside before the first word is read, and count as yes unless the rest
    of the reply asks to reschedule.
    """
    text = " " + " ".join(re.findall(r"[a-z]+", (body or "").lower())) + " "
    affirming = False
    for phrase in AFFIRMING_PHRASES:
        if f" {phrase} " in text:
            affirming = True
            text = text.replace(f" {phrase} ", " ")

    words = text.split()
    if words and words[0] in YES_REPLIES:
        return "yes"
    if words and words[0] in NO_REPLIES:
        return "no"
    if affirming and not NO_REPLIES.intersection(words):
        return "yes"
    return None


async def handle_inbound_sms(
    services: Services,
    tenant: TenantConfig,
    from_number: str,
    body: str,
    media_urls: list[str],
) -> str:
    """Handle one inbound text and return the reply to send back."""
    phone = normalize_phone(from_number)
    if media_urls:
        await _save_note(services, tenant, phone, body, media_urls)

    record = await services.confirmations.get(tenant.key, phone)
    if record is None:
        log.info("SMS from %s with no pending booking", redact_pii(phone))
        if media_urls:
            return "Thanks, we've passed your photos on to the team."
        return f"Thanks for your message. {tenant.business_name} will get back to you soon."

    kind = reply_kind(body)
    if kind == "yes":
        await services.confirmations.delete(tenant.key, phone, resolution="confirmed")
        services.metrics.incr(tenant.key, "confirmations")
        await services.notifier.notify_owner(
            tenant, f"Confirmed: {record.name or phone} for {record.when} at {record.address}.",
        )
        thanks = f"Thanks {record.name}" if record.name else "Thanks"
        return f"{thanks}, you're confirmed for {record.when}. See you then!"

    if kind == "no":
        await services.confirmations.delete(tenant.key, phone, resolution="declined")
        services.metrics.incr(tenant.key, "declines")
        await services.notifier.notify_owner(
            tenant,
            f"Reschedule needed: {record.name or phone} ({phone}) can't make {record.when}. "
            "Please call them to find another time.",
        )
        return "No worries. We'll be in touch to find another time."

    return f"Please reply Y to confirm your booking for {record.when}, or N to reschedule."


async def _save_note(
    services: Services,
    tenant: TenantConfig,
    phone: str,
    body: str,
    media_urls: list[str],
) -> None:
    received = services.clock()
    if services.store is not None:
        key = f"{confirmation_key(tenant.key, phone)}:{received.isoformat()}"
        try:
            await services.store.upsert(NOTES_TABLE, key, {
                "tenant_key": tenant.key,
                "phone": phone,
                "body": body,
                "media_urls": media_urls,
                "received_at": received.isoformat(),
            })
        except Exception:
            log.exception("Failed to store customer note from %s", redact_pii(phone))
    links = " ".join(media_urls)
    await services.notifier.notify_owner(tenant, f"Photos from {phone}: {links} {body}".strip())
