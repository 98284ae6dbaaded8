"""
scheduler.py — periodic housekeeping for the classification cache.

Every CACHE_PURGE_INTERVAL_SECS (default 1 h) expired rows are deleted from
classification_cache. Expired rows are already ignored on read; purging only
keeps the SQLite file from growing without bound.
"""
from __future__ import annotations

import asyncio
import logging

import config
import database as db

logger = logging.getLogger(__name__)

_running = False


async def purge_once() -> int:
    """Delete expired cache rows now. Returns the number removed (0 on error)."""
    try:
        removed = await db.purge_expired_cache()
    except Exception as exc:
        logger.error("Cache purge failed: %s", exc)
        return 0
    if removed:
        logger.info("Purged %d expired classification(s) from the cache", removed)
    return removed


async def _scheduler_loop() -> None:
    """Background coroutine — wakes every CACHE_PURGE_INTERVAL_SECS and purges."""
    logger.info("📅 Cache purge scheduler started (every %ds)", config.CACHE_PURGE_INTERVAL_SECS)

    while _running:
        try:
            await asyncio.sleep(config.CACHE_PURGE_INTERVAL_SECS)
            if not _running:
                break
            await purge_once()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error("Scheduler loop error: %s", exc)


def start() -> asyncio.Task:
    """Start the scheduler as a background asyncio Task."""
    global _running
    _running = True
    return asyncio.create_task(_scheduler_loop())


def stop() -> None:
    global _running
    _running = False
