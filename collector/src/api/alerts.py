"""
PATCH /v1/alerts/{alert_id}/resolve endpoint for operator alert resolution.

Resolves one alert on behalf of the authenticated operator. The operator
name bound to the bearer token is stored as ``resolved_by``. Resolving an
already-resolved alert returns it unchanged.

CHANGELOG:
- 2026-03-04: Initial creation (STORY-031)

TODO:
- None
"""

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict

from collector.src.api.deps import CurrentOperator, DbSession
from collector.src.models import Severity
from collector.src.services.alerts import resolve_alert

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["alerts"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class AlertOut(BaseModel):
    """An alert as returned by the operator API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: str
    plant_id: str
    string_number: int
    severity: Severity
    message: str
    expected_value: float | None = None
    actual_value: float | None = None
    gap_percent: float | None = None
    created_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------


@router.patch("/alerts/{alert_id}/resolve", response_model=AlertOut)
async def resolve(
    alert_id: int,
    operator: CurrentOperator,
    db: DbSession,
) -> AlertOut:
    """Resolve an alert.

    Args:
        alert_id: Alert primary key.
        operator: Authenticated operator from the bearer token.
        db: Async database session.

    Returns:
        AlertOut: The resolved alert.

    Raises:
        HTTPException: 404 if no alert has this id.
    """
    alert = await resolve_alert(db, alert_id, resolved_by=operator)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found.")
    return AlertOut.model_validate(alert)
