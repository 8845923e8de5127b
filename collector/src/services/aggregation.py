"""
Hourly and daily per-string rollups with a relative health score.

Buckets are computed in a fixed site UTC offset (``SITE_UTC_OFFSET_MINUTES``)
so that "today" matches the plant's local day. For the bucket containing
``now``, every raw reading of the device is reloaded and the rollup rows are
recomputed from scratch and upserted on (device_id, string_number, bucket),
so repeated runs over unchanged readings leave identical rows.

Per string:

- avg/min/max current, avg voltage, avg power, where zero values are left
  out of each average;
- sample_count: number of readings in the bucket;
- daily only: health_score = string avg current / device avg current x 100,
  clamped to [0, 100]; the device average covers all readings with
  current > 0 that day, and a device with none scores 100.

Stored precision: current 3 decimals, voltage and power 2, health score 2.

CHANGELOG:
- 2026-02-28: Rewrite as incremental rollup upserts over string readings (STORY-028)
- 2026-02-14: Initial creation (STORY-012)

TODO:
- None
"""

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from collector.src.db.models import DailyAggregate, HourlyAggregate
from collector.src.db.models import StringReading as StringReadingRow
from collector.src.db.upsert import dialect_insert

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Buckets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Bucket:
    """A half-open UTC interval [start, end) plus its site-local label.

    Attributes:
        start: Bucket start in UTC.
        end: Bucket end in UTC.
        local_date: Site-local calendar date of the bucket start.
    """

    start: datetime.datetime
    end: datetime.datetime
    local_date: datetime.date


def hour_bucket(now: datetime.datetime, offset_minutes: int = 0) -> Bucket:
    """Return the site-local hour containing *now*."""
    tz = datetime.timezone(datetime.timedelta(minutes=offset_minutes))
    local = now.astimezone(tz).replace(minute=0, second=0, microsecond=0)
    start = local.astimezone(datetime.UTC)
    return Bucket(start=start, end=start + datetime.timedelta(hours=1), local_date=local.date())


def day_bucket(now: datetime.datetime, offset_minutes: int = 0) -> Bucket:
    """Return the site-local calendar day containing *now*."""
    tz = datetime.timezone(datetime.timedelta(minutes=offset_minutes))
    local = now.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
    start = local.astimezone(datetime.UTC)
    return Bucket(start=start, end=start + datetime.timedelta(days=1), local_date=local.date())


# ---------------------------------------------------------------------------
# Pure statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StringStats:
    """Rollup values for one string over one bucket."""

    string_number: int
    avg_current: float
    min_current: float | None
    max_current: float | None
    avg_voltage: float
    avg_power: float
    sample_count: int


def _avg(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize(
    rows: Iterable[tuple[int, float, float, float]],
) -> dict[int, StringStats]:
    """Fold ``(string_number, voltage, current, power)`` rows per string.

    This is a **pure function**. Zero values are excluded from each average;
    min/max current are None when no reading had current > 0.
    """
    grouped: dict[int, list[tuple[float, float, float]]] = {}
    for string_number, voltage, current, power in rows:
        grouped.setdefault(string_number, []).append((voltage, current, power))

    stats: dict[int, StringStats] = {}
    for string_number, samples in sorted(grouped.items()):
        voltages = [v for v, _, _ in samples if v > 0]
        currents = [c for _, c, _ in samples if c > 0]
        powers = [p for _, _, p in samples if p > 0]
        stats[string_number] = StringStats(
            string_number=string_number,
            avg_current=round(_avg(currents), 3),
            min_current=round(min(currents), 3) if currents else None,
            max_current=round(max(currents), 3) if currents else None,
            avg_voltage=round(_avg(voltages), 2),
            avg_power=round(_avg(powers), 2),
            sample_count=len(samples),
        )
    return stats


def device_average_current(rows: Iterable[tuple[int, float, float, float]]) -> float:
    """Average current across all of a device's readings with current > 0."""
    return _avg([current for _, _, current, _ in rows if current > 0])


def health_score(string_avg_current: float, device_avg_current: float) -> float:
    """Return the string's health score, always within [0, 100]."""
    if device_avg_current <= 0:
        return 100.0
    score = string_avg_current / device_avg_current * 100
    return round(min(100.0, max(0.0, score)), 2)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def _load_rows(
    db: AsyncSession,
    device_id: str,
    bucket: Bucket,
) -> list[tuple[int, float, float, float]]:
    result = await db.execute(
        select(
            StringReadingRow.string_number,
            StringReadingRow.voltage,
            StringReadingRow.current,
            StringReadingRow.power,
        )
        .where(
            StringReadingRow.device_id == device_id,
            StringReadingRow.ts >= bucket.start,
            StringReadingRow.ts < bucket.end,
        )
        .order_by(StringReadingRow.id)
    )
    return [tuple(row) for row in result.all()]


_METRIC_COLUMNS = (
    "avg_current",
    "min_current",
    "max_current",
    "avg_voltage",
    "avg_power",
    "sample_count",
)


def _stats_values(stats: StringStats) -> dict:
    return {
        "avg_current": stats.avg_current,
        "min_current": stats.min_current,
        "max_current": stats.max_current,
        "avg_voltage": stats.avg_voltage,
        "avg_power": stats.avg_power,
        "sample_count": stats.sample_count,
    }


async def update_hourly_aggregates(
    db: AsyncSession,
    *,
    device_id: str,
    plant_id: str,
    now: datetime.datetime,
    offset_minutes: int = 0,
) -> int:
    """Recompute and upsert the device's rollups for the hour containing *now*.

    Returns:
        int: Number of string rows upserted (strings with readings only).
    """
    bucket = hour_bucket(now, offset_minutes)
    stats = summarize(await _load_rows(db, device_id, bucket))
    if not stats:
        return 0

    rows = [
        {
            "device_id": device_id,
            "plant_id": plant_id,
            "string_number": s.string_number,
            "hour": bucket.start,
            **_stats_values(s),
        }
        for s in stats.values()
    ]
    stmt = dialect_insert(db, HourlyAggregate).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["device_id", "string_number", "hour"],
        set_={key: stmt.excluded[key] for key in ("plant_id", *_METRIC_COLUMNS)},
    )
    await db.execute(stmt)
    return len(rows)


async def update_daily_aggregates(
    db: AsyncSession,
    *,
    device_id: str,
    plant_id: str,
    now: datetime.datetime,
    offset_minutes: int = 0,
) -> int:
    """Recompute and upsert the device's rollups for the day containing *now*.

    Returns:
        int: Number of string rows upserted (strings with readings only).
    """
    bucket = day_bucket(now, offset_minutes)
    raw = await _load_rows(db, device_id, bucket)
    stats = summarize(raw)
    if not stats:
        return 0

    device_avg = device_average_current(raw)
    rows = [
        {
            "device_id": device_id,
            "plant_id": plant_id,
            "string_number": s.string_number,
            "date": bucket.local_date,
            **_stats_values(s),
            "health_score": health_score(s.avg_current, device_avg),
        }
        for s in stats.values()
    ]
    stmt = dialect_insert(db, DailyAggregate).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["device_id", "string_number", "date"],
        set_={key: stmt.excluded[key] for key in ("plant_id", *_METRIC_COLUMNS, "health_score")},
    )
    await db.execute(stmt)
    return len(rows)


async def update_aggregates(
    db: AsyncSession,
    *,
    device_id: str,
    plant_id: str,
    now: datetime.datetime,
    offset_minutes: int = 0,
) -> tuple[int, int]:
    """Refresh both the hourly and the daily rollups for one device.

    Does not commit; runs inside the caller's per-device transaction.

    Returns:
        tuple[int, int]: Hourly and daily rows upserted.
    """
    hourly = await update_hourly_aggregates(
        db, device_id=device_id, plant_id=plant_id, now=now, offset_minutes=offset_minutes
    )
    daily = await update_daily_aggregates(
        db, device_id=device_id, plant_id=plant_id, now=now, offset_minutes=offset_minutes
    )
    logger.debug("Aggregates for device %s: %d hourly, %d daily rows", device_id, hourly, daily)
    return hourly, daily
