"""
Ingestion service for vendor topology and normalized string readings.

Plants and devices are upserted on their vendor identifiers; readings are
appended. Stored precision: voltage and power 2 decimals, current 3.

None of these functions commit: the orchestrator wraps each sync step, and
each device's reading/alert/aggregate work, in its own transaction.

CHANGELOG:
- 2026-03-05: max_strings discovery takes the payload channel capacity
- 2026-02-28: Rewrite for plants/devices/string readings (STORY-026)
- 2026-02-14: Initial creation (STORY-010)

TODO:
- None
"""

import datetime
import logging
from collections.abc import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from collector.src.db.models import Device, Plant
from collector.src.db.models import StringReading as StringReadingRow
from collector.src.db.upsert import dialect_insert
from collector.src.models import DeviceInfo, PlantInfo, Provider, StringReading
from collector.src.normalizer import detect_max_strings

logger = logging.getLogger(__name__)


async def upsert_plants(
    db: AsyncSession,
    provider: Provider,
    plants: Sequence[PlantInfo],
    *,
    now: datetime.datetime,
) -> int:
    """Insert or update plants reported by *provider*.

    Args:
        db: Async SQLAlchemy session.
        provider: Vendor that reported the plants.
        plants: Plants as listed by the vendor.
        now: Sync timestamp stored in ``last_synced``.

    Returns:
        int: Number of plants written.
    """
    if not plants:
        return 0

    rows = [
        {
            "id": p.plant_id,
            "provider": provider.value,
            "name": p.name,
            "capacity_kw": p.capacity_kw,
            "address": p.address,
            "latitude": p.latitude,
            "longitude": p.longitude,
            "health_state": p.health.value if p.health is not None else None,
            "last_synced": now,
        }
        for p in plants
    ]
    stmt = dialect_insert(db, Plant).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={
            "provider": stmt.excluded.provider,
            "name": stmt.excluded.name,
            "capacity_kw": stmt.excluded.capacity_kw,
            "address": stmt.excluded.address,
            "latitude": stmt.excluded.latitude,
            "longitude": stmt.excluded.longitude,
            "health_state": stmt.excluded.health_state,
            "last_synced": stmt.excluded.last_synced,
        },
    )
    await db.execute(stmt)
    logger.info("Synced %d %s plants", len(rows), provider.value)
    return len(rows)


async def refresh_plant_health(
    db: AsyncSession,
    provider: Provider,
    plants: Sequence[PlantInfo],
    *,
    now: datetime.datetime,
) -> int:
    """Update only the health state of plants already known for *provider*.

    Returns:
        int: Number of plants updated.
    """
    updated = 0
    for p in plants:
        if p.health is None:
            continue
        result = await db.execute(
            update(Plant)
            .where(Plant.id == p.plant_id, Plant.provider == provider.value)
            .values(health_state=p.health.value, last_synced=now)
        )
        updated += result.rowcount or 0
    logger.info("Refreshed health for %d %s plants", updated, provider.value)
    return updated


async def list_plant_ids(db: AsyncSession, provider: Provider) -> list[str]:
    """Return the ids of all stored plants of *provider*, sorted."""
    result = await db.execute(
        select(Plant.id).where(Plant.provider == provider.value).order_by(Plant.id)
    )
    return list(result.scalars().all())


async def upsert_devices(
    db: AsyncSession,
    provider: Provider,
    devices: Sequence[DeviceInfo],
    *,
    now: datetime.datetime,
) -> int:
    """Insert or update inverters reported by *provider*.

    Devices whose plant is unknown are skipped with a warning. A known
    ``max_strings`` is never overwritten.

    Returns:
        int: Number of devices written.
    """
    known_plants = set(await list_plant_ids(db, provider))
    rows = []
    for d in devices:
        if d.plant_id not in known_plants:
            logger.warning(
                "Skipping %s device %s: unknown plant %s",
                provider.value,
                d.device_id,
                d.plant_id,
            )
            continue
        rows.append(
            {
                "id": d.device_id,
                "plant_id": d.plant_id,
                "provider": provider.value,
                "name": d.name,
                "model": d.model,
                "device_type": d.device_type,
                "max_strings": d.max_strings,
                "last_synced": now,
            }
        )
    if not rows:
        return 0

    stmt = dialect_insert(db, Device).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={
            "plant_id": stmt.excluded.plant_id,
            "provider": stmt.excluded.provider,
            "name": stmt.excluded.name,
            "model": stmt.excluded.model,
            "device_type": stmt.excluded.device_type,
            "max_strings": func.coalesce(Device.max_strings, stmt.excluded.max_strings),
            "last_synced": stmt.excluded.last_synced,
        },
    )
    await db.execute(stmt)
    logger.info("Synced %d %s devices", len(rows), provider.value)
    return len(rows)


async def load_devices(db: AsyncSession, provider: Provider) -> list[Device]:
    """Return all stored devices of *provider*, ordered by id."""
    result = await db.execute(
        select(Device).where(Device.provider == provider.value).order_by(Device.id)
    )
    return list(result.scalars().all())


async def discover_max_strings(
    db: AsyncSession,
    device: Device,
    readings: Sequence[StringReading],
    *,
    capacity: int = 0,
) -> int | None:
    """Record the device's string count the first time a payload reveals it.

    Set once: an existing value is kept even if fewer strings report later.

    Args:
        db: Async SQLAlchemy session.
        device: The stored device.
        readings: This poll's normalized readings.
        capacity: Channel count stated by the payload itself (0 if none).

    Returns:
        The device's max_strings after the call (None if still unknown).
    """
    if device.max_strings:
        return device.max_strings
    detected = detect_max_strings(list(readings), capacity)
    if detected <= 0:
        return None
    await db.execute(
        update(Device)
        .where(Device.id == device.id, Device.max_strings.is_(None))
        .values(max_strings=detected)
    )
    device.max_strings = detected
    logger.info("Discovered max_strings=%d for device %s", detected, device.id)
    return detected


async def insert_readings(
    db: AsyncSession,
    device: Device,
    readings: Sequence[StringReading],
    *,
    ts: datetime.datetime,
) -> int:
    """Append one poll's readings for *device*, stamped with *ts*.

    Returns:
        int: Number of rows inserted.
    """
    if not readings:
        return 0
    db.add_all(
        [
            StringReadingRow(
                device_id=device.id,
                plant_id=device.plant_id,
                string_number=r.string_number,
                voltage=round(r.voltage, 2),
                current=round(r.current, 3),
                power=round(r.power, 2),
                ts=ts,
            )
            for r in readings
        ]
    )
    await db.flush()
    return len(readings)
