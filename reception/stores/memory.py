"""In-process keyed store, used when no durable store is configured."""

from __future__ import annotations

import copy
from typing import Any

from .base import KeyedStore


class MemoryKeyedStore(KeyedStore):
    """Dict-of-dicts store. Rows are deep-copied in and out."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}

    async def upsert(self, table: str, key: str, row: dict[str, Any]) -> None:
        self._tables.setdefault(table, {})[key] = copy.deepcopy(row)

    async def get_by_key(self, table: str, key: str) -> dict[str, Any] | None:
        row = self._tables.get(table, {}).get(key)
        return copy.deepcopy(row) if row is not None else None

    async def delete_by_key(self, table: str, key: str) -> None:
        self._tables.get(table, {}).pop(key, None)

    def keys(self, table: str) -> list[str]:
        return list(self._tables.get(table, {}))
