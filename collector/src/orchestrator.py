"""
Poll orchestrator: one plant/device/reading cycle per provider.

A cycle for one provider moves through:

1. PlantSync (at most hourly): list plants, upsert them.
2. DeviceSync (at most hourly): list inverters for stored plants, upsert them.
3. HealthRefresh (only when PlantSync did not run): re-list plants
   bypassing the client cache and update their health state.
4. ReadingFetch: for stored devices grouped by device type and chunked,
   fetch raw payloads, then per device in one transaction: normalize,
   discover max strings, insert readings, evaluate alerts, update rollups.

Failure isolation:

- A failing sync step is recorded on the report and the cycle continues
  with the stored topology; its hourly gate is not advanced.
- A failing fetch chunk marks its devices FETCH-failed; other chunks go on.
- Normalization and persistence failures are caught per device.
- A provider whose previous cycle is still running is skipped, never queued.
- Providers run concurrently; one failing provider never blocks another.

All mutable state lives in per-provider :class:`ProviderState` objects owned
by the :class:`PollOrchestrator` instance.

CHANGELOG:
- 2026-03-05: Poll cycle reads bypass the readings cache; any chunk error is a FETCH failure
- 2026-03-03: Low-light alert expiry hook
- 2026-03-01: Typed CycleReport / DeviceOutcome (STORY-029)
- 2026-02-28: Initial creation (STORY-029)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import datetime
import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collector.src.clients.base import VendorClient, chunked
from collector.src.clients.errors import VendorError
from collector.src.db.models import Device
from collector.src.models import Provider, RawDevicePayload
from collector.src.normalizer import NormalizationError, normalize, string_capacity
from collector.src.services.aggregation import update_aggregates
from collector.src.services.alerts import evaluate_device_alerts, expire_low_light_alerts
from collector.src.services.ingestion import (
    discover_max_strings,
    insert_readings,
    list_plant_ids,
    load_devices,
    refresh_plant_health,
    upsert_devices,
    upsert_plants,
)

if TYPE_CHECKING:
    from collector.src.health import HealthWriter

logger = logging.getLogger(__name__)

TOPOLOGY_SYNC_INTERVAL_S: float = 3600.0
"""Minimum seconds between two plant syncs (and two device syncs)."""


# ---------------------------------------------------------------------------
# Report types
# ---------------------------------------------------------------------------


class CycleStatus(str, enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureKind(str, enum.Enum):
    """Why a device produced no persisted readings this cycle."""

    FETCH = "fetch"
    NO_DATA = "no_data"
    NORMALIZATION = "normalization"
    PERSISTENCE = "persistence"


class DeviceOutcome(BaseModel):
    """Result of processing one device within a cycle."""

    device_id: str
    readings: int = 0
    alerts_created: int = 0
    alerts_resolved: int = 0
    failure: FailureKind | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class CycleReport(BaseModel):
    """Typed summary of one provider cycle.

    Attributes:
        provider: Provider the cycle ran for.
        status: completed, skipped (previous cycle still running) or failed
            (an unexpected error aborted the cycle).
        started_at: Cycle start (UTC).
        finished_at: Cycle end (UTC).
        plants_synced: Plants upserted by PlantSync (0 when not run).
        devices_synced: Devices upserted by DeviceSync (0 when not run).
        plants_refreshed: Plants updated by HealthRefresh.
        step_errors: Failed sync steps mapped to their error text.
        devices: Per-device outcomes of ReadingFetch.
        error: Error text when status is failed.
    """

    provider: Provider
    status: CycleStatus = CycleStatus.COMPLETED
    started_at: datetime.datetime
    finished_at: datetime.datetime | None = None
    plants_synced: int = 0
    devices_synced: int = 0
    plants_refreshed: int = 0
    step_errors: dict[str, str] = Field(default_factory=dict)
    devices: list[DeviceOutcome] = Field(default_factory=list)
    error: str | None = None

    @property
    def readings_inserted(self) -> int:
        return sum(d.readings for d in self.devices)

    @property
    def devices_failed(self) -> int:
        return sum(1 for d in self.devices if not d.ok)

    def summary(self) -> dict:
        """Compact, JSON-serializable view used by logs and the health file."""
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "devices": len(self.devices),
            "devices_failed": self.devices_failed,
            "readings": self.readings_inserted,
            "alerts_created": sum(d.alerts_created for d in self.devices),
            "alerts_resolved": sum(d.alerts_resolved for d in self.devices),
            "step_errors": dict(self.step_errors),
            "error": self.error,
        }


@dataclass
class ProviderState:
    """Mutable per-provider orchestration state.

    Attributes:
        provider: Provider this state belongs to.
        running: True while a cycle is in progress.
        last_plant_sync: Monotonic time of the last successful plant sync.
        last_device_sync: Monotonic time of the last successful device sync.
        last_report: Report of the most recent cycle.
    """

    provider: Provider
    running: bool = False
    last_plant_sync: float | None = None
    last_device_sync: float | None = None
    last_report: CycleReport | None = None


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class PollOrchestrator:
    """Runs poll cycles for a fixed set of vendor clients.

    Args:
        clients: One client per enabled provider.
        session_factory: Factory for async database sessions.
        site_utc_offset_minutes: Offset used for rollup buckets.
        low_light_expiry: When set, open alerts older than this are resolved
            on devices whose evaluation was skipped for low light.
        health: Optional health writer updated after every cycle.
        sync_interval_s: Minimum seconds between topology syncs.
        clock: Monotonic clock for the hourly gates.
        now: UTC wall clock for reading timestamps.
    """

    def __init__(
        self,
        *,
        clients: dict[Provider, VendorClient],
        session_factory: async_sessionmaker[AsyncSession],
        site_utc_offset_minutes: int = 0,
        low_light_expiry: datetime.timedelta | None = None,
        health: HealthWriter | None = None,
        sync_interval_s: float = TOPOLOGY_SYNC_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._clients = clients
        self._session_factory = session_factory
        self._offset_minutes = site_utc_offset_minutes
        self._low_light_expiry = low_light_expiry
        self._health = health
        self._sync_interval_s = sync_interval_s
        self._clock = clock
        self._now = now
        self.states: dict[Provider, ProviderState] = {
            provider: ProviderState(provider=provider) for provider in clients
        }

    @property
    def providers(self) -> list[Provider]:
        return list(self._clients)

    async def run_all(self) -> list[CycleReport]:
        """Run one cycle for every provider concurrently."""
        return list(await asyncio.gather(*(self.run_cycle(p) for p in self._clients)))

    async def run_cycle(self, provider: Provider) -> CycleReport:
        """Run one cycle for *provider*, or skip it if one is in progress.

        Never raises: unexpected errors yield a failed report.
        """
        state = self.states[provider]
        if state.running:
            logger.warning("%s: previous cycle still running, skipping", provider.value)
            return CycleReport(
                provider=provider,
                status=CycleStatus.SKIPPED,
                started_at=self._now(),
                finished_at=self._now(),
            )

        state.running = True
        report = CycleReport(provider=provider, started_at=self._now())
        try:
            await self._run_steps(state, report)
        except Exception as exc:
            logger.error("%s: poll cycle failed", provider.value, exc_info=True)
            report.status = CycleStatus.FAILED
            report.error = f"{exc.__class__.__name__}: {exc}"
        finally:
            state.running = False
            report.finished_at = self._now()

        state.last_report = report
        logger.info("%s: cycle %s", provider.value, report.summary())
        if self._health is not None:
            try:
                self._health.record_cycle(report)
            except OSError:
                logger.warning("Failed to write health file", exc_info=True)
        return report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _due(self, last: float | None) -> bool:
        return last is None or self._clock() - last >= self._sync_interval_s

    async def _run_steps(self, state: ProviderState, report: CycleReport) -> None:
        provider = state.provider
        client = self._clients[provider]

        plants_synced = False
        if self._due(state.last_plant_sync):
            plants_synced = await self._sync_plants(state, client, report)

        if self._due(state.last_device_sync):
            await self._sync_devices(state, client, report)

        if not plants_synced:
            await self._refresh_health(client, report)

        await self._fetch_readings(client, report)

    async def _sync_plants(
        self,
        state: ProviderState,
        client: VendorClient,
        report: CycleReport,
    ) -> bool:
        try:
            plants = await client.list_plants()
            async with self._session_factory() as db, db.begin():
                report.plants_synced = await upsert_plants(
                    db, state.provider, plants, now=self._now()
                )
        except (VendorError, SQLAlchemyError) as exc:
            self._step_failed(report, "plant_sync", exc)
            return False
        state.last_plant_sync = self._clock()
        return True

    async def _sync_devices(
        self,
        state: ProviderState,
        client: VendorClient,
        report: CycleReport,
    ) -> None:
        try:
            async with self._session_factory() as db:
                plant_ids = await list_plant_ids(db, state.provider)
            if not plant_ids:
                logger.info("%s: no plants stored, skipping device sync", state.provider.value)
                return
            devices = await client.list_devices(plant_ids)
            async with self._session_factory() as db, db.begin():
                report.devices_synced = await upsert_devices(
                    db, state.provider, devices, now=self._now()
                )
        except (VendorError, SQLAlchemyError) as exc:
            self._step_failed(report, "device_sync", exc)
            return
        state.last_device_sync = self._clock()

    async def _refresh_health(self, client: VendorClient, report: CycleReport) -> None:
        try:
            plants = await client.list_plants(use_cache=False)
            async with self._session_factory() as db, db.begin():
                report.plants_refreshed = await refresh_plant_health(
                    db, report.provider, plants, now=self._now()
                )
        except (VendorError, SQLAlchemyError) as exc:
            self._step_failed(report, "health_refresh", exc)

    def _step_failed(self, report: CycleReport, step: str, exc: Exception) -> None:
        logger.error("%s: %s failed: %s", report.provider.value, step, exc)
        report.step_errors[step] = f"{exc.__class__.__name__}: {exc}"

    async def _fetch_readings(self, client: VendorClient, report: CycleReport) -> None:
        provider = report.provider
        async with self._session_factory() as db:
            devices = await load_devices(db, provider)
        if not devices:
            logger.info("%s: no devices stored, skipping reading fetch", provider.value)
            return

        by_type: dict[str, list[Device]] = {}
        for device in devices:
            by_type.setdefault(device.device_type, []).append(device)

        for device_type, group in sorted(by_type.items()):
            for chunk in chunked(group, client.reading_batch_size):
                try:
                    payloads = await client.get_latest_readings(
                        [d.id for d in chunk], device_type, use_cache=False
                    )
                except VendorError as exc:
                    logger.error(
                        "%s: reading fetch failed for %d %s devices: %s",
                        provider.value,
                        len(chunk),
                        device_type,
                        exc,
                    )
                    self._chunk_failed(report, chunk, str(exc))
                    continue
                except Exception as exc:
                    logger.exception(
                        "%s: unexpected error fetching %d %s devices",
                        provider.value,
                        len(chunk),
                        device_type,
                    )
                    self._chunk_failed(report, chunk, f"{exc.__class__.__name__}: {exc}")
                    continue

                by_id = {p.device_id: p for p in payloads}
                ts = self._now()
                for device in chunk:
                    payload = by_id.get(device.id)
                    if payload is None:
                        logger.warning("%s: no real-time data for device %s", provider.value, device.id)
                        report.devices.append(
                            DeviceOutcome(device_id=device.id, failure=FailureKind.NO_DATA)
                        )
                        continue
                    report.devices.append(await self._process_device(provider, device, payload, ts))

    def _chunk_failed(self, report: CycleReport, chunk: list[Device], error: str) -> None:
        report.devices.extend(
            DeviceOutcome(device_id=d.id, failure=FailureKind.FETCH, error=error) for d in chunk
        )

    async def _process_device(
        self,
        provider: Provider,
        device: Device,
        payload: RawDevicePayload,
        ts: datetime.datetime,
    ) -> DeviceOutcome:
        """Normalize and persist one device's payload in one transaction."""
        try:
            readings = normalize(
                provider,
                payload.data,
                device_type=device.device_type,
                max_strings=device.max_strings,
            )
        except NormalizationError as exc:
            logger.error("%s: normalization failed for device %s: %s", provider.value, device.id, exc)
            return DeviceOutcome(device_id=device.id, failure=FailureKind.NORMALIZATION, error=str(exc))

        try:
            async with self._session_factory() as db, db.begin():
                await discover_max_strings(
                    db,
                    device,
                    readings,
                    capacity=string_capacity(
                        provider, payload.data, device_type=device.device_type
                    ),
                )
                inserted = await insert_readings(db, device, readings, ts=ts)
                alerts = await evaluate_device_alerts(
                    db,
                    device_id=device.id,
                    plant_id=device.plant_id,
                    readings=readings,
                    now=ts,
                )
                resolved = alerts.resolved
                if alerts.skip_reason is not None and self._low_light_expiry is not None:
                    resolved += await expire_low_light_alerts(
                        db, device_id=device.id, now=ts, max_age=self._low_light_expiry
                    )
                await update_aggregates(
                    db,
                    device_id=device.id,
                    plant_id=device.plant_id,
                    now=ts,
                    offset_minutes=self._offset_minutes,
                )
        except SQLAlchemyError as exc:
            logger.error(
                "%s: persistence failed for device %s", provider.value, device.id, exc_info=True
            )
            return DeviceOutcome(device_id=device.id, failure=FailureKind.PERSISTENCE, error=str(exc))

        return DeviceOutcome(
            device_id=device.id,
            readings=inserted,
            alerts_created=alerts.created,
            alerts_resolved=resolved,
        )
