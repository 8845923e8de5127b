"""
Retention job for raw string readings.

Deletes string readings older than the configured retention window
(``RETENTION_DAYS``, default 30). Hourly and daily rollups and alerts are
never deleted; they outlive the readings they were computed from.

CHANGELOG:
- 2026-03-01: Initial creation (STORY-030)

TODO:
- None
"""

import datetime
import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from collector.src.db.models import StringReading

logger = logging.getLogger(__name__)


def retention_cutoff(now: datetime.datetime, retention_days: int) -> datetime.datetime:
    """Return the timestamp before which readings are purged."""
    return now - datetime.timedelta(days=retention_days)


async def purge_old_readings(
    db: AsyncSession,
    *,
    now: datetime.datetime,
    retention_days: int = 30,
) -> int:
    """Delete readings older than *retention_days* and commit.

    Args:
        db: Async SQLAlchemy session.
        now: Reference time for the retention window.
        retention_days: Age in days beyond which readings are deleted.

    Returns:
        int: Number of readings deleted.
    """
    cutoff = retention_cutoff(now, retention_days)
    result = await db.execute(delete(StringReading).where(StringReading.ts < cutoff))
    await db.commit()

    deleted = result.rowcount or 0
    logger.info("Retention purged %d readings older than %s", deleted, cutoff.isoformat())
    return deleted
