"""APScheduler setup for the daily embedding retention sweep."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from mailpipe.storage.vector_store import EmbeddingStore

logger = logging.getLogger(__name__)


def _parse_retention_time(time_str: str) -> tuple[int, int]:
    """Parse 'HH:MM' into (hour, minute). Falls back to (3, 0) on parse error."""
    try:
        hour_str, minute_str = time_str.strip().split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (ValueError, AttributeError):
        logger.warning("Invalid RETENTION_TIME %r; defaulting to 03:00", time_str)
        return 3, 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        logger.warning("Out-of-range RETENTION_TIME %r; defaulting to 03:00", time_str)
        return 3, 0
    return hour, minute


def create_retention_scheduler(
    store: EmbeddingStore,
    max_age_days: int,
    at: str = "03:00",
) -> AsyncIOScheduler:
    """Return an AsyncIOScheduler that runs store.retention_sweep() daily.

    The caller is responsible for calling scheduler.start() and scheduler.shutdown().
    """
    scheduler = AsyncIOScheduler()
    hour, minute = _parse_retention_time(at)
    scheduler.add_job(
        store.retention_sweep,
        "cron",
        hour=hour,
        minute=minute,
        kwargs={"max_age_days": max_age_days},
    )
    logger.info(
        "Embedding retention (%d days) scheduled daily at %02d:%02d",
        max_age_days,
        hour,
        minute,
    )
    return scheduler
