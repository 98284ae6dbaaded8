"""
cache_store.py — pluggable key/value store for classification results.

The classifier only talks to the CacheStore interface, so tests inject a
MemoryCacheStore and production uses the SQLite-backed store.

  memory  → MemoryCacheStore   dict + injectable clock, process-local
  sqlite  → SqliteCacheStore   classification_cache table in database.py

Values are plain JSON-able dicts. Writes are idempotent: the stored value is
a pure function of the key, so last-writer-wins is fine.
"""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import config
import database as db

logger = logging.getLogger(__name__)


class CacheStore(ABC):

    @abstractmethod
    async def get(self, key: str) -> Optional[dict]:
        """Return the value for key, or None if missing or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: dict, ttl_secs: int) -> None:
        ...


class MemoryCacheStore(CacheStore):

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, dict]] = {}

    async def get(self, key: str) -> Optional[dict]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: dict, ttl_secs: int) -> None:
        self._entries[key] = (self._clock() + ttl_secs, value)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteCacheStore(CacheStore):
    """
    Persistent store. A failing DB must never fail a classification, so
    read errors are treated as misses and write errors are only logged.
    """

    async def get(self, key: str) -> Optional[dict]:
        try:
            return await db.get_cached_classification(key)
        except Exception as exc:
            logger.warning("cache_store: read failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: dict, ttl_secs: int) -> None:
        try:
            await db.cache_classification(key, value, ttl_secs)
        except Exception as exc:
            logger.warning("cache_store: write failed for %s: %s", key, exc)


# Module-level instance; reset to None to rebuild after changing CACHE_BACKEND
_store: Optional[CacheStore] = None


def get_cache_store() -> CacheStore:
    global _store
    if _store is None:
        backend = config.CACHE_BACKEND.strip().lower()
        if backend == "memory":
            _store = MemoryCacheStore()
        elif backend == "sqlite":
            _store = SqliteCacheStore()
        else:
            raise ValueError(f"Unknown CACHE_BACKEND '{config.CACHE_BACKEND}'. Use sqlite or memory.")
        logger.info("Classification cache backend: %s", backend)
    return _store
