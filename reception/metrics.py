"""Per-tenant call outcome counters, flushed periodically to the keyed store."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from reception.stores.base import KeyedStore

log = logging.getLogger("reception.metrics")

TABLE = "metrics"

EVENTS = (
    "calls",
    "bookings",
    "manual_bookings",
    "escalations",
    "quotes",
    "cancel_requests",
    "confirmations",
    "declines",
    "system_errors",
    "quiet_calls",
)


class CallMetrics:
    """In-process counters. Only the request handlers write them."""

    def __init__(self) -> None:
        self._counts: dict[str, Counter] = {}
        self.started_at = datetime.now(timezone.utc)

    def incr(self, tenant_key: str, event: str, amount: int = 1) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown metric {event!r}")
        self._counts.setdefault(tenant_key, Counter())[event] += amount

    def snapshot(self) -> dict[str, dict[str, int]]:
        return {
            tenant: {event: counts.get(event, 0) for event in EVENTS}
            for tenant, counts in self._counts.items()
        }

    async def flush(self, store: KeyedStore | None) -> int:
        """Write one row per tenant; returns the number of rows written."""
        if store is None:
            return 0
        snapshot = self.snapshot()
        now = datetime.now(timezone.utc).isoformat()
        for tenant, counts in snapshot.items():
            await store.upsert(TABLE, tenant, {
                "counts": counts,
                "since": self.started_at.isoformat(),
                "flushed_at": now,
            })
        log.debug("Flushed metrics for %d tenant(s)", len(snapshot))
        return len(snapshot)
