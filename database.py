"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  classification_cache — content classifications keyed by (URL, options) hash,
                         each row with its own expiry
  selection_logs       — one row per /selection run, for /stats

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "selector.db")
_lock = asyncio.Lock()          # serialise schema creation


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
-- Cached classifier output; value is a deterministic function of the key,
-- so concurrent writers may safely overwrite each other.
CREATE TABLE IF NOT EXISTS classification_cache (
    cache_key  TEXT PRIMARY KEY,
    payload    TEXT NOT NULL,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_expires ON classification_cache (expires_at);

CREATE TABLE IF NOT EXISTS selection_logs (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    ts                      TEXT    NOT NULL,
    image_count             INTEGER NOT NULL DEFAULT 0,
    assigned_count          INTEGER NOT NULL DEFAULT 0,
    unused_count            INTEGER NOT NULL DEFAULT 0,
    excluded_count          INTEGER NOT NULL DEFAULT 0,
    classification_failures INTEGER NOT NULL DEFAULT 0,
    duration_ms             INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_selection_logs_ts ON selection_logs (ts);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Classification cache ──────────────────────────────────────────────────────

async def get_cached_classification(cache_key: str) -> Optional[dict]:
    """Return the cached payload for cache_key, or None if absent or expired."""
    now = _now().isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT payload FROM classification_cache WHERE cache_key = ? AND expires_at > ?",
            (cache_key, now),
        ) as cur:
            row = await cur.fetchone()
    if not row:
        return None
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        logger.warning("Corrupt cache row for %s — ignoring", cache_key)
        return None


async def cache_classification(cache_key: str, payload: dict, ttl_secs: int) -> None:
    """Store (or overwrite) a classification with the given TTL."""
    now = _now()
    expires = now + timedelta(seconds=ttl_secs)
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT OR REPLACE INTO classification_cache
               (cache_key, payload, created_at, expires_at)
               VALUES (?, ?, ?, ?)""",
            (cache_key, json.dumps(payload, sort_keys=True), now.isoformat(), expires.isoformat()),
        )
        await db.commit()


async def purge_expired_cache() -> int:
    """Delete expired cache rows. Returns the number removed."""
    now = _now().isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        cursor = await db.execute(
            "DELETE FROM classification_cache WHERE expires_at <= ?", (now,)
        )
        await db.commit()
        return cursor.rowcount


async def get_cache_size() -> int:
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute("SELECT COUNT(*) FROM classification_cache") as cur:
            row = await cur.fetchone()
            return row[0] if row else 0


# ── Selection run log ─────────────────────────────────────────────────────────

async def log_selection(
    image_count: int,
    assigned_count: int,
    unused_count: int,
    excluded_count: int,
    classification_failures: int,
    duration_ms: int,
) -> None:
    """Record one pipeline run."""
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO selection_logs
               (ts, image_count, assigned_count, unused_count, excluded_count,
                classification_failures, duration_ms)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (_now().isoformat(), image_count, assigned_count, unused_count,
             excluded_count, classification_failures, duration_ms),
        )
        await db.commit()


async def get_selection_stats() -> dict:
    """Summary of all logged runs for GET /stats."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            """SELECT COUNT(*),
                      COALESCE(SUM(image_count), 0),
                      COALESCE(SUM(assigned_count), 0),
                      COALESCE(SUM(classification_failures), 0),
                      COALESCE(AVG(duration_ms), 0),
                      MAX(ts)
               FROM selection_logs"""
        ) as cur:
            runs, images, assigned, failures, avg_ms, last_ts = await cur.fetchone()

    return {
        "runs": runs,
        "images_processed": images,
        "images_assigned": assigned,
        "classification_failures": failures,
        "avg_duration_ms": int(avg_ms or 0),
        "last_run": last_ts,
        "cache_entries": await get_cache_size(),
    }
