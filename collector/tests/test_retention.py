"""
Tests for the raw-reading retention job.

Tests verify:
- Readings older than the retention window are deleted.
- Readings inside the window survive.
- Rollups (daily aggregates) are never touched.
- The number of deleted readings is returned.

CHANGELOG:
- 2026-03-01: Initial creation (STORY-030)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from collector.src.db.models import DailyAggregate, Device, Plant, StringReading
from collector.src.services.retention import purge_old_readings, retention_cutoff

NOW = datetime(2026, 6, 1, 3, 0, tzinfo=UTC)


def _reading(ts: datetime) -> StringReading:
    return StringReading(
        device_id="dev-1",
        plant_id="plant-1",
        string_number=1,
        voltage=600.0,
        current=9.0,
        power=5400.0,
        ts=ts,
    )


class TestRetentionCutoff:
    """Cutoff arithmetic."""

    def test_cutoff_is_now_minus_days(self) -> None:
        assert retention_cutoff(NOW, 30) == datetime(2026, 5, 2, 3, 0, tzinfo=UTC)


class TestPurgeOldReadings:
    """Deleting raw readings while keeping rollups."""

    @pytest.mark.asyncio
    async def test_old_reading_deleted_daily_aggregate_kept(self, db: AsyncSession) -> None:
        old_ts = NOW - timedelta(days=31)
        db.add(Plant(id="plant-1", provider="growatt", name="Shed"))
        db.add(Device(id="dev-1", plant_id="plant-1", provider="growatt", name="SN1", device_type="max"))
        db.add(_reading(old_ts))
        db.add(_reading(NOW - timedelta(days=1)))
        db.add(
            DailyAggregate(
                device_id="dev-1",
                plant_id="plant-1",
                string_number=1,
                date=old_ts.date(),
                avg_current=9.0,
                min_current=9.0,
                max_current=9.0,
                avg_voltage=600.0,
                avg_power=5400.0,
                sample_count=1,
                health_score=100.0,
            )
        )
        await db.commit()

        deleted = await purge_old_readings(db, now=NOW, retention_days=30)

        assert deleted == 1
        remaining = (await db.execute(select(func.count()).select_from(StringReading))).scalar_one()
        assert remaining == 1
        daily = (await db.execute(select(DailyAggregate))).scalars().one()
        assert daily.date == date(2026, 5, 1)
        assert daily.avg_current == 9.0
        assert daily.health_score == 100.0

    @pytest.mark.asyncio
    async def test_nothing_to_delete(self, db: AsyncSession) -> None:
        db.add(_reading(NOW - timedelta(days=2)))
        await db.commit()

        assert await purge_old_readings(db, now=NOW, retention_days=30) == 0
