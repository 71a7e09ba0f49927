"""Keyed row stores: an ABC and its Supabase and in-memory backends."""

from .base import KeyedStore
from .memory import MemoryKeyedStore

__all__ = ["KeyedStore", "MemoryKeyedStore"]
