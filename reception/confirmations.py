"""Pending booking confirmations shared by the voice and SMS channels.

The voice channel writes a record when a booking is accepted on the
phone; the SMS channel later finds it by (tenant, customer phone) alone,
since the two requests share no other identifier.

Two rules on top of a plain keyed store:

* Expiry. A record expires at the earlier of ``created_at + ttl`` and the
  appointment start. Expired records read as absent and are removed.
* Late writes. ``delete`` leaves a resolution marker in place of the
  record. A ``put`` whose record was created at or before that marker is
  dropped, so a voice commit that lands after the customer already
  replied is a no-op rather than a resurrected booking.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from reception.models.booking import PendingConfirmation
from reception.phones import normalize_phone, redact_pii
from reception.stores.base import KeyedStore

log = logging.getLogger("reception.confirmations")

TABLE = "pending_confirmations"


def confirmation_key(tenant_key: str, phone: str) -> str:
    """Deterministic key shared by both channels, e.g. ``default:+61400000000``."""
    return f"{tenant_key}:{normalize_phone(phone)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfirmationStore:
    """At most one live pending confirmation per (tenant, phone)."""

    def __init__(
        self,
        backend: KeyedStore,
        ttl: timedelta = timedelta(hours=72),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._backend = backend
        self._ttl = ttl
        self._clock = clock

    def expiry_for(self, record: PendingConfirmation) -> datetime:
        expires = record.created_at + self._ttl
        if record.start is not None and record.start < expires:
            expires = record.start
        return expires

    async def put(self, record: PendingConfirmation) -> bool:
        """Store ``record``, replacing any earlier booking for the same customer.

        Returns False when the record was already resolved by a reply.
        """
        key = confirmation_key(record.tenant_key, record.phone)
        existing = await self._backend.get_by_key(TABLE, key)
        resolved_at = _parse_marker(existing)
        if resolved_at is not None and resolved_at >= record.created_at:
            log.info("Ignoring late confirmation write for %s (resolved %s)",
                     redact_pii(key), resolved_at.isoformat())
            return False

        record.expires_at = self.expiry_for(record)
        await self._backend.upsert(TABLE, key, {
            "record": record.model_dump(mode="json"),
            "resolved_at": None,
        })
        log.info("Pending confirmation stored for %s until %s",
                 redact_pii(key), record.expires_at.isoformat())
        return True

    async def get(self, tenant_key: str, phone: str) -> PendingConfirmation | None:
        key = confirmation_key(tenant_key, phone)
        row = await self._backend.get_by_key(TABLE, key)
        if not row or not row.get("record"):
            return None

        record = PendingConfirmation.model_validate(row["record"])
        expires = record.expires_at or self.expiry_for(record)
        if self._clock() >= expires:
            log.info("Pending confirmation for %s expired at %s",
                     redact_pii(key), expires.isoformat())
            await self._backend.delete_by_key(TABLE, key)
            return None
        return record

    async def delete(self, tenant_key: str, phone: str, resolution: str = "resolved") -> None:
        """Resolve the record, leaving a marker that blocks late writes."""
        key = confirmation_key(tenant_key, phone)
        await self._backend.upsert(TABLE, key, {
            "record": None,
            "resolved_at": self._clock().isoformat(),
            "resolution": resolution,
        })
        log.info("Pending confirmation for %s %s", redact_pii(key), resolution)


def _parse_marker(row: dict | None) -> datetime | None:
    if not row or not row.get("resolved_at"):
        return None
    marker = row["resolved_at"]
    if isinstance(marker, datetime):
        return marker
    return datetime.fromisoformat(marker)
