"""Abstract keyed row store.

Pending confirmations, quote leads, customer notes and metrics snapshots
are all rows addressed by a string key inside a named table. Any backend
(Supabase, an in-process dict) implements this ABC.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class KeyedStore(ABC):
    """Get/put/delete rows by key. Rows are JSON-serializable dicts."""

    @abstractmethod
    async def upsert(self, table: str, key: str, row: dict[str, Any]) -> None:
        """Insert the row, replacing any existing row with the same key."""

    @abstractmethod
    async def get_by_key(self, table: str, key: str) -> dict[str, Any] | None:
        """Return the row stored under ``key``, or None."""

    @abstractmethod
    async def delete_by_key(self, table: str, key: str) -> None:
        """Remove the row stored under ``key``; missing rows are not an error."""
