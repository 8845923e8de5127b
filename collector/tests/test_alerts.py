"""
Tests for the peer-relative string alert engine.

Tests verify:
- A string's own current never enters its own peer average.
- Gap thresholds map onto INFO / WARNING / CRITICAL.
- Low-light cycles (fewer than two active strings, or average < 1 A) are
  skipped entirely.
- Lifecycle: severity changes resolve the old alert and open a new one,
  recovered strings are resolved, absent strings keep their alerts,
  duplicates collapse onto the oldest alert.
- Low-light expiry resolves stale alerts only.
- Operator resolution is idempotent.

CHANGELOG:
- 2026-03-03: Low-light expiry tests
- 2026-02-28: Initial creation (STORY-027)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from collector.src.db.models import Alert, Device, Plant
from collector.src.models import Severity, StringReading
from collector.src.services.alerts import (
    LOW_LIGHT_RESOLVER,
    SKIP_LOW_CURRENT,
    SKIP_TOO_FEW_ACTIVE,
    SYSTEM_RESOLVER,
    AlertEvaluation,
    OpenAlert,
    classify_gap,
    evaluate_device_alerts,
    evaluate_strings,
    expire_low_light_alerts,
    format_message,
    plan_alert_changes,
    resolve_alert,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _readings(*currents: float, voltage: float = 600.0) -> list[StringReading]:
    """Build readings numbered 1..n from a list of currents."""
    return [
        StringReading(string_number=n, voltage=voltage, current=c, power=voltage * c)
        for n, c in enumerate(currents, start=1)
    ]


def _open(alert_id: int, string_number: int, severity: Severity, age_h: float = 1.0) -> OpenAlert:
    return OpenAlert(
        id=alert_id,
        string_number=string_number,
        severity=severity,
        created_at=NOW - timedelta(hours=age_h),
    )


async def _seed_device(db: AsyncSession, device_id: str = "dev-1") -> None:
    db.add(Plant(id="plant-1", provider="huawei", name="Roof"))
    db.add(Device(id=device_id, plant_id="plant-1", provider="huawei", name="INV-1", device_type="1"))
    await db.commit()


def _alert(
    string_number: int,
    severity: Severity,
    *,
    created_at: datetime,
    device_id: str = "dev-1",
) -> Alert:
    return Alert(
        device_id=device_id,
        plant_id="plant-1",
        string_number=string_number,
        severity=severity.value,
        message=format_message(string_number, 60.0),
        expected_value=10.0,
        actual_value=4.0,
        gap_percent=60.0,
        created_at=created_at,
    )


async def _open_alerts(db: AsyncSession) -> list[Alert]:
    result = await db.execute(
        select(Alert).where(Alert.resolved_at.is_(None)).order_by(Alert.id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Pure evaluation
# ---------------------------------------------------------------------------


class TestClassifyGap:
    """Gap% -> severity tiers (strictly greater than the threshold)."""

    @pytest.mark.parametrize(
        ("gap", "expected"),
        [
            (74.5, Severity.CRITICAL),
            (50.1, Severity.CRITICAL),
            (50.0, Severity.WARNING),
            (25.5, Severity.WARNING),
            (25.0, Severity.INFO),
            (10.5, Severity.INFO),
            (10.0, None),
            (-20.0, None),
        ],
    )
    def test_thresholds(self, gap: float, expected: Severity | None) -> None:
        assert classify_gap(gap) is expected


class TestEvaluateStrings:
    """Peer-average comparison across active strings."""

    def test_one_weak_string_is_critical(self) -> None:
        evaluation = evaluate_strings(_readings(12.0, 11.8, 11.5, 3.0))

        assert not evaluation.skipped
        by_string = {s.string_number: s for s in evaluation.strings}
        weak = by_string[4]
        assert weak.peer_average == pytest.approx(11.7667, abs=1e-3)
        assert weak.gap_percent == pytest.approx(74.5, abs=0.1)
        assert weak.severity is Severity.CRITICAL
        assert all(by_string[n].severity is None for n in (1, 2, 3))

    def test_own_current_excluded_from_peer_average(self) -> None:
        evaluation = evaluate_strings(_readings(10.0, 10.0, 1.0))
        by_string = {s.string_number: s for s in evaluation.strings}

        assert by_string[3].peer_average == pytest.approx(10.0)
        assert by_string[1].peer_average == pytest.approx(5.5)

    def test_inactive_strings_ignored(self) -> None:
        evaluation = evaluate_strings(_readings(8.0, 0.05, 8.0))
        assert [s.string_number for s in evaluation.strings] == [1, 3]

    def test_too_few_active_strings_skips(self) -> None:
        evaluation = evaluate_strings(_readings(9.0, 0.1, 0.0))
        assert evaluation.skip_reason == SKIP_TOO_FEW_ACTIVE
        assert evaluation.strings == ()

    def test_low_average_current_skips(self) -> None:
        evaluation = evaluate_strings(_readings(0.5, 0.6, 0.4))
        assert evaluation.skip_reason == SKIP_LOW_CURRENT

    def test_message_format(self) -> None:
        assert format_message(4, 74.5045) == "String 4 is 74.5% below average"


# ---------------------------------------------------------------------------
# Pure lifecycle planning
# ---------------------------------------------------------------------------


class TestPlanAlertChanges:
    """Resolve/create decisions from an evaluation and the open alerts."""

    def test_new_critical_created_once(self) -> None:
        plan = plan_alert_changes(evaluate_strings(_readings(12.0, 11.8, 11.5, 3.0)), [])

        assert plan.to_resolve == ()
        assert len(plan.to_create) == 1
        new = plan.to_create[0]
        assert new.string_number == 4
        assert new.severity is Severity.CRITICAL
        assert new.expected_value == pytest.approx(11.767)
        assert new.actual_value == pytest.approx(3.0)
        assert new.gap_percent == pytest.approx(74.5)

    def test_matching_open_alert_not_duplicated(self) -> None:
        plan = plan_alert_changes(
            evaluate_strings(_readings(12.0, 11.8, 11.5, 3.0)),
            [_open(7, 4, Severity.CRITICAL)],
        )
        assert plan.to_resolve == ()
        assert plan.to_create == ()

    def test_recovered_string_resolves_alert(self) -> None:
        plan = plan_alert_changes(
            evaluate_strings(_readings(10.0, 10.0, 9.5)),
            [_open(3, 3, Severity.CRITICAL)],
        )
        assert plan.to_resolve == (3,)
        assert plan.to_create == ()

    def test_escalation_replaces_warning_with_critical(self) -> None:
        plan = plan_alert_changes(
            evaluate_strings(_readings(10.0, 10.0, 4.0)),
            [_open(11, 3, Severity.WARNING)],
        )
        assert plan.to_resolve == (11,)
        assert [(a.string_number, a.severity) for a in plan.to_create] == [(3, Severity.CRITICAL)]

    def test_absent_string_keeps_alert(self) -> None:
        plan = plan_alert_changes(
            evaluate_strings(_readings(10.0, 10.0, 10.0)),
            [_open(5, 5, Severity.WARNING)],
        )
        assert plan.to_resolve == ()

    def test_duplicates_collapse_onto_oldest(self) -> None:
        plan = plan_alert_changes(
            evaluate_strings(_readings(12.0, 11.8, 11.5, 3.0)),
            [
                _open(20, 4, Severity.CRITICAL, age_h=1),
                _open(10, 4, Severity.CRITICAL, age_h=5),
            ],
        )
        assert plan.to_resolve == (20,)
        assert plan.to_create == ()

    def test_skipped_evaluation_changes_nothing(self) -> None:
        plan = plan_alert_changes(
            AlertEvaluation(skip_reason=SKIP_LOW_CURRENT),
            [_open(1, 2, Severity.CRITICAL)],
        )
        assert plan.to_resolve == ()
        assert plan.to_create == ()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestEvaluateDeviceAlerts:
    """Alert lifecycle against the database."""

    @pytest.mark.asyncio
    async def test_creates_critical_for_weak_string(self, db: AsyncSession) -> None:
        await _seed_device(db)
        outcome = await evaluate_device_alerts(
            db,
            device_id="dev-1",
            plant_id="plant-1",
            readings=_readings(12.0, 11.8, 11.5, 3.0),
            now=NOW,
        )
        await db.commit()

        assert outcome.created == 1
        assert outcome.resolved == 0
        alerts = await _open_alerts(db)
        assert len(alerts) == 1
        assert alerts[0].string_number == 4
        assert alerts[0].severity == "CRITICAL"
        assert alerts[0].message == "String 4 is 74.5% below average"

    @pytest.mark.asyncio
    async def test_repeated_cycles_keep_one_open_alert(self, db: AsyncSession) -> None:
        await _seed_device(db)
        for minutes in (0, 5, 10):
            await evaluate_device_alerts(
                db,
                device_id="dev-1",
                plant_id="plant-1",
                readings=_readings(12.0, 11.8, 11.5, 3.0),
                now=NOW + timedelta(minutes=minutes),
            )
            await db.commit()

        assert len(await _open_alerts(db)) == 1

    @pytest.mark.asyncio
    async def test_critical_resolved_when_gap_falls(self, db: AsyncSession) -> None:
        await _seed_device(db)
        db.add(_alert(3, Severity.CRITICAL, created_at=NOW - timedelta(hours=1)))
        await db.commit()

        outcome = await evaluate_device_alerts(
            db,
            device_id="dev-1",
            plant_id="plant-1",
            readings=_readings(10.0, 10.0, 9.5),
            now=NOW,
        )
        await db.commit()

        assert outcome.resolved == 1
        assert outcome.created == 0
        assert await _open_alerts(db) == []
        resolved = (await db.execute(select(Alert))).scalars().one()
        assert resolved.resolved_by == SYSTEM_RESOLVER

    @pytest.mark.asyncio
    async def test_warning_escalates_to_critical(self, db: AsyncSession) -> None:
        await _seed_device(db)
        db.add(_alert(3, Severity.WARNING, created_at=NOW - timedelta(hours=1)))
        await db.commit()

        outcome = await evaluate_device_alerts(
            db,
            device_id="dev-1",
            plant_id="plant-1",
            readings=_readings(10.0, 10.0, 4.0),
            now=NOW,
        )
        await db.commit()

        assert outcome.resolved == 1
        assert outcome.created == 1
        open_alerts = await _open_alerts(db)
        assert [(a.string_number, a.severity) for a in open_alerts] == [(3, "CRITICAL")]

    @pytest.mark.asyncio
    async def test_low_light_leaves_alerts_open(self, db: AsyncSession) -> None:
        await _seed_device(db)
        db.add(_alert(2, Severity.CRITICAL, created_at=NOW - timedelta(hours=1)))
        await db.commit()

        outcome = await evaluate_device_alerts(
            db,
            device_id="dev-1",
            plant_id="plant-1",
            readings=_readings(0.5, 0.6, 0.4),
            now=NOW,
        )

        assert outcome.skip_reason == SKIP_LOW_CURRENT
        assert outcome.created == 0
        assert outcome.resolved == 0
        assert len(await _open_alerts(db)) == 1


class TestExpireLowLightAlerts:
    """Stale open alerts are resolved during low light when configured."""

    @pytest.mark.asyncio
    async def test_only_stale_alerts_expire(self, db: AsyncSession) -> None:
        await _seed_device(db)
        db.add(_alert(1, Severity.WARNING, created_at=NOW - timedelta(hours=30)))
        db.add(_alert(2, Severity.CRITICAL, created_at=NOW - timedelta(hours=2)))
        await db.commit()

        expired = await expire_low_light_alerts(
            db, device_id="dev-1", now=NOW, max_age=timedelta(hours=24)
        )
        await db.commit()

        assert expired == 1
        open_alerts = await _open_alerts(db)
        assert [a.string_number for a in open_alerts] == [2]
        stale = (await db.execute(select(Alert).where(Alert.string_number == 1))).scalars().one()
        assert stale.resolved_by == LOW_LIGHT_RESOLVER


class TestResolveAlert:
    """Operator resolution."""

    @pytest.mark.asyncio
    async def test_resolves_and_records_operator(self, db: AsyncSession) -> None:
        await _seed_device(db)
        alert = _alert(3, Severity.CRITICAL, created_at=NOW - timedelta(hours=1))
        db.add(alert)
        await db.commit()

        resolved = await resolve_alert(db, alert.id, resolved_by="alice", now=NOW)

        assert resolved is not None
        assert resolved.resolved_by == "alice"
        assert resolved.resolved_at is not None
        assert await _open_alerts(db) == []

    @pytest.mark.asyncio
    async def test_resolving_twice_is_idempotent(self, db: AsyncSession) -> None:
        await _seed_device(db)
        alert = _alert(3, Severity.CRITICAL, created_at=NOW - timedelta(hours=1))
        db.add(alert)
        await db.commit()

        first = await resolve_alert(db, alert.id, resolved_by="alice", now=NOW)
        second = await resolve_alert(
            db, alert.id, resolved_by="bob", now=NOW + timedelta(hours=1)
        )

        assert second is not None
        assert second.resolved_by == "alice"
        assert second.resolved_at == first.resolved_at

    @pytest.mark.asyncio
    async def test_unknown_alert_returns_none(self, db: AsyncSession) -> None:
        assert await resolve_alert(db, 999, resolved_by="alice") is None
