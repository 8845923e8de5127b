"""
Unit tests for the collector health file writer.

Tests verify:
- record_cycle() stores a per-provider cycle summary.
- A second provider's cycle does not overwrite the first one's summary.
- record_retention() updates the retention fields and keeps cycle summaries.
- The health file contains all fields even before any event.

CHANGELOG:
- 2026-03-01: Per-provider cycle summaries (STORY-029)
- 2026-02-14: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from collector.src.health import HealthWriter
from collector.src.models import Provider
from collector.src.orchestrator import CycleReport, CycleStatus, DeviceOutcome, FailureKind

STARTED = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _make_report(provider: Provider = Provider.HUAWEI, **overrides: object) -> CycleReport:
    """Create a finished CycleReport with two devices, one failed."""
    defaults: dict[str, object] = {
        "provider": provider,
        "started_at": STARTED,
        "finished_at": STARTED.replace(second=12),
        "devices": [
            DeviceOutcome(device_id="d1", readings=4, alerts_created=1),
            DeviceOutcome(device_id="d2", failure=FailureKind.FETCH, error="timeout"),
        ],
    }
    defaults.update(overrides)
    return CycleReport(**defaults)


def _read(path: Path) -> dict:
    return json.loads(path.read_text())


class TestRecordCycle:
    """Cycle summaries per provider."""

    def test_record_cycle_writes_health_file(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        HealthWriter(path).record_cycle(_make_report())

        data = _read(path)
        summary = data["last_cycle"]["huawei"]
        assert summary["status"] == "completed"
        assert summary["devices"] == 2
        assert summary["devices_failed"] == 1
        assert summary["readings"] == 4
        assert summary["alerts_created"] == 1
        assert summary["started_at"] == STARTED.isoformat()

    def test_providers_kept_side_by_side(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(path)
        writer.record_cycle(_make_report(Provider.HUAWEI))
        writer.record_cycle(
            _make_report(Provider.SOLIS, status=CycleStatus.FAILED, error="boom", devices=[])
        )

        cycles = _read(path)["last_cycle"]
        assert set(cycles) == {"huawei", "solis"}
        assert cycles["solis"]["status"] == "failed"
        assert cycles["solis"]["error"] == "boom"


class TestRecordRetention:
    """Retention fields."""

    def test_record_retention_preserves_cycles(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(path)
        writer.record_cycle(_make_report())
        writer.record_retention(42)

        data = _read(path)
        assert data["retention_deleted"] == 42
        assert data["last_retention_ts"] is not None
        assert "huawei" in data["last_cycle"]


class TestHealthFileContainsAllFields:
    """All fields present from the first write."""

    def test_defaults_before_any_cycle(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        HealthWriter(str(path)).record_retention(0)

        data = _read(path)
        assert set(data) == {"last_cycle", "last_retention_ts", "retention_deleted"}
        assert data["last_cycle"] == {}
