"""
Peer-relative string underperformance alerts.

Each poll, for each device, every active string's current is compared with
the mean current of the *other* active strings on the same device:

    gap% = (peer_avg - current) / peer_avg * 100

and mapped to a severity: > 50% CRITICAL, > 25% WARNING, > 10% INFO.

The evaluation is skipped entirely (nothing created, nothing resolved) when
fewer than two strings are active (current > 0.1 A) or the active strings
average below 1 A, which covers dawn, dusk and overcast periods.

Lifecycle rules:

- At most one open alert per (device, string, severity).
- An open alert on an evaluated string whose severity no longer matches is
  resolved; a new one is opened for the new severity.
- Open alerts on strings that are absent or inactive this cycle stay open.
- Duplicate open alerts for the same key are collapsed; the oldest stays.

The evaluation and the lifecycle plan are pure functions; only
:func:`evaluate_device_alerts`, :func:`expire_low_light_alerts` and
:func:`resolve_alert` touch the database.

CHANGELOG:
- 2026-03-03: Optional low-light expiry of stale open alerts
- 2026-03-02: Collapse duplicate open alerts
- 2026-02-28: Initial creation (STORY-027)

TODO:
- None
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from collector.src.db.models import Alert
from collector.src.db.upsert import as_utc
from collector.src.models import Severity, StringReading

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ACTIVE_CURRENT_A: float = 0.1
"""A string is active when its current exceeds this value."""

MIN_ACTIVE_STRINGS: int = 2
MIN_AVERAGE_CURRENT_A: float = 1.0
"""Below this combined average current the device is in low light."""

SEVERITY_THRESHOLDS: tuple[tuple[float, Severity], ...] = (
    (50.0, Severity.CRITICAL),
    (25.0, Severity.WARNING),
    (10.0, Severity.INFO),
)
"""Gap% thresholds, checked from most to least severe."""

LOW_LIGHT_RESOLVER: str = "system:low-light-expiry"
SYSTEM_RESOLVER: str = "system"

SKIP_TOO_FEW_ACTIVE = "too_few_active_strings"
SKIP_LOW_CURRENT = "low_average_current"


# ---------------------------------------------------------------------------
# Pure evaluation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StringEvaluation:
    """Outcome of comparing one active string with its peers."""

    string_number: int
    current: float
    peer_average: float
    gap_percent: float
    severity: Severity | None


@dataclass(frozen=True)
class AlertEvaluation:
    """Evaluation of one device's readings for one cycle.

    Attributes:
        skip_reason: Set when the device was not evaluated (low light).
        strings: Per-string results for active strings, by string number.
    """

    skip_reason: str | None = None
    strings: tuple[StringEvaluation, ...] = ()

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


def classify_gap(gap_percent: float) -> Severity | None:
    """Map a gap percentage onto a severity, or None below 10%."""
    for threshold, severity in SEVERITY_THRESHOLDS:
        if gap_percent > threshold:
            return severity
    return None


def evaluate_strings(readings: Sequence[StringReading]) -> AlertEvaluation:
    """Compare every active string with the average of the other active ones.

    This is a **pure function**: the string being evaluated never enters its
    own peer average.
    """
    active = sorted(
        (r for r in readings if r.current > ACTIVE_CURRENT_A),
        key=lambda r: r.string_number,
    )
    if len(active) < MIN_ACTIVE_STRINGS:
        return AlertEvaluation(skip_reason=SKIP_TOO_FEW_ACTIVE)

    total = sum(r.current for r in active)
    if total / len(active) < MIN_AVERAGE_CURRENT_A:
        return AlertEvaluation(skip_reason=SKIP_LOW_CURRENT)

    results = []
    for r in active:
        peer_average = (total - r.current) / (len(active) - 1)
        if peer_average > 0:
            gap = (peer_average - r.current) / peer_average * 100
        else:
            gap = 0.0
        results.append(
            StringEvaluation(
                string_number=r.string_number,
                current=r.current,
                peer_average=peer_average,
                gap_percent=gap,
                severity=classify_gap(gap),
            )
        )
    return AlertEvaluation(strings=tuple(results))


# ---------------------------------------------------------------------------
# Pure lifecycle planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OpenAlert:
    """The parts of a stored open alert the planner needs."""

    id: int
    string_number: int
    severity: Severity
    created_at: datetime.datetime


@dataclass(frozen=True)
class NewAlert:
    """An alert to be opened."""

    string_number: int
    severity: Severity
    message: str
    expected_value: float
    actual_value: float
    gap_percent: float


@dataclass(frozen=True)
class AlertPlan:
    """Alert ids to resolve and alerts to open for one device cycle."""

    to_resolve: tuple[int, ...] = ()
    to_create: tuple[NewAlert, ...] = ()


def format_message(string_number: int, gap_percent: float) -> str:
    return f"String {string_number} is {gap_percent:.1f}% below average"


def plan_alert_changes(
    evaluation: AlertEvaluation,
    open_alerts: Sequence[OpenAlert],
) -> AlertPlan:
    """Decide which open alerts to resolve and which to create.

    A skipped evaluation yields an empty plan.
    """
    if evaluation.skipped:
        return AlertPlan()

    to_resolve: list[int] = []
    kept: dict[tuple[int, Severity], OpenAlert] = {}
    for alert in sorted(open_alerts, key=lambda a: (a.created_at, a.id)):
        key = (alert.string_number, alert.severity)
        if key in kept:
            to_resolve.append(alert.id)
        else:
            kept[key] = alert

    to_create: list[NewAlert] = []
    for s in evaluation.strings:
        for (string_number, severity), alert in kept.items():
            if string_number == s.string_number and severity != s.severity:
                to_resolve.append(alert.id)
        if s.severity is None or (s.string_number, s.severity) in kept:
            continue
        to_create.append(
            NewAlert(
                string_number=s.string_number,
                severity=s.severity,
                message=format_message(s.string_number, s.gap_percent),
                expected_value=round(s.peer_average, 3),
                actual_value=round(s.current, 3),
                gap_percent=round(s.gap_percent, 1),
            )
        )
    return AlertPlan(to_resolve=tuple(sorted(set(to_resolve))), to_create=tuple(to_create))


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertOutcome:
    """Counts from one device's alert evaluation."""

    created: int = 0
    resolved: int = 0
    skip_reason: str | None = None


async def load_open_alerts(db: AsyncSession, device_id: str) -> list[OpenAlert]:
    """Return the device's open alerts as planner inputs."""
    result = await db.execute(
        select(Alert).where(Alert.device_id == device_id, Alert.resolved_at.is_(None))
    )
    return [
        OpenAlert(
            id=a.id,
            string_number=a.string_number,
            severity=Severity(a.severity),
            created_at=as_utc(a.created_at),
        )
        for a in result.scalars().all()
    ]


async def _resolve_ids(
    db: AsyncSession,
    alert_ids: Sequence[int],
    *,
    now: datetime.datetime,
    resolved_by: str,
) -> int:
    if not alert_ids:
        return 0
    result = await db.execute(
        update(Alert)
        .where(Alert.id.in_(alert_ids), Alert.resolved_at.is_(None))
        .values(resolved_at=now, resolved_by=resolved_by)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


async def evaluate_device_alerts(
    db: AsyncSession,
    *,
    device_id: str,
    plant_id: str,
    readings: Sequence[StringReading],
    now: datetime.datetime,
) -> AlertOutcome:
    """Evaluate one device's fresh readings and apply the alert lifecycle.

    Does not commit; runs inside the caller's per-device transaction.

    Args:
        db: Async SQLAlchemy session.
        device_id: Device the readings belong to.
        plant_id: Owning plant, copied onto new alerts.
        readings: This cycle's normalized readings for the device.
        now: Timestamp for created_at / resolved_at.

    Returns:
        AlertOutcome: How many alerts were created and resolved.
    """
    evaluation = evaluate_strings(readings)
    if evaluation.skipped:
        logger.debug("Alert evaluation skipped for %s: %s", device_id, evaluation.skip_reason)
        return AlertOutcome(skip_reason=evaluation.skip_reason)

    plan = plan_alert_changes(evaluation, await load_open_alerts(db, device_id))
    resolved = await _resolve_ids(db, plan.to_resolve, now=now, resolved_by=SYSTEM_RESOLVER)
    db.add_all(
        [
            Alert(
                device_id=device_id,
                plant_id=plant_id,
                string_number=new.string_number,
                severity=new.severity.value,
                message=new.message,
                expected_value=new.expected_value,
                actual_value=new.actual_value,
                gap_percent=new.gap_percent,
                created_at=now,
            )
            for new in plan.to_create
        ]
    )
    await db.flush()

    if plan.to_create or resolved:
        logger.info(
            "Alerts for device %s: %d created, %d resolved",
            device_id,
            len(plan.to_create),
            resolved,
        )
    return AlertOutcome(created=len(plan.to_create), resolved=resolved)


async def expire_low_light_alerts(
    db: AsyncSession,
    *,
    device_id: str,
    now: datetime.datetime,
    max_age: datetime.timedelta,
) -> int:
    """Resolve the device's open alerts older than *max_age*.

    Called only for devices whose evaluation was skipped for low light and
    only when the expiry window is configured.

    Returns:
        int: Number of alerts resolved.
    """
    result = await db.execute(
        update(Alert)
        .where(
            Alert.device_id == device_id,
            Alert.resolved_at.is_(None),
            Alert.created_at < now - max_age,
        )
        .values(resolved_at=now, resolved_by=LOW_LIGHT_RESOLVER)
        .execution_options(synchronize_session="fetch")
    )
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d stale alerts for device %s in low light", expired, device_id)
    return expired


async def resolve_alert(
    db: AsyncSession,
    alert_id: int,
    *,
    resolved_by: str,
    now: datetime.datetime | None = None,
) -> Alert | None:
    """Resolve one alert on behalf of an operator and commit.

    Idempotent: an already-resolved alert is returned unchanged.

    Args:
        db: Async SQLAlchemy session.
        alert_id: Alert primary key.
        resolved_by: Operator identity recorded on the alert.
        now: Resolution time; defaults to the current UTC time.

    Returns:
        The alert, or None when no alert has this id.
    """
    alert = await db.get(Alert, alert_id)
    if alert is None:
        return None
    if alert.resolved_at is not None:
        return alert

    alert.resolved_at = now or datetime.datetime.now(tz=datetime.UTC)
    alert.resolved_by = resolved_by
    await db.commit()
    logger.info("Alert %d resolved by %s", alert_id, resolved_by)
    return alert
