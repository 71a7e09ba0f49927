"""Supabase-backed keyed store.

Every table used through this store has the same shape::

    key        text primary key
    data       jsonb
    updated_at timestamptz

supabase-py is synchronous, so each call runs in the default thread pool.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any

from supabase import Client, create_client

from reception.exceptions import StoreError

from .base import KeyedStore

log = logging.getLogger("reception.stores.supabase")


class SupabaseKeyedStore(KeyedStore):
    """KeyedStore over Supabase tables of ``{key, data, updated_at}`` rows."""

    def __init__(self, url: str, service_key: str, client: Client | None = None) -> None:
        if client is None and not (url and service_key):
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are both required.")
        self._client = client or create_client(url, service_key)

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def upsert(self, table: str, key: str, row: dict[str, Any]) -> None:
        payload = {
            "key": key,
            "data": row,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._run_in_executor(
                self._client.table(table).upsert(payload, on_conflict="key").execute
            )
        except Exception as e:
            raise StoreError(f"upsert into {table} failed: {e}") from e

    async def get_by_key(self, table: str, key: str) -> dict[str, Any] | None:
        try:
            result = await self._run_in_executor(
                self._client.table(table).select("data").eq("key", key).limit(1).execute
            )
        except Exception as e:
            raise StoreError(f"read from {table} failed: {e}") from e
        if not result.data:
            return None
        return result.data[0].get("data")

    async def delete_by_key(self, table: str, key: str) -> None:
        try:
            await self._run_in_executor(
                self._client.table(table).delete().eq("key", key).execute
            )
        except Exception as e:
            raise StoreError(f"delete from {table} failed: {e}") from e
        log.debug("Deleted %s row %s", table, key)
