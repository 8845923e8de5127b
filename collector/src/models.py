"""
Pydantic models for vendor topology and normalized string telemetry.

Defines the canonical shapes that flow between the vendor clients, the
per-vendor normalizers, and the persistence services:

- PlantInfo / DeviceInfo: topology as reported by one vendor cloud.
- RawDevicePayload: one device's untouched real-time payload.
- StringReading: one string's voltage/current/power after normalization.

Vendor field layouts never leak past these models.

CHANGELOG:
- 2026-03-02: Add Severity and PlantHealth enums shared with the db layer
- 2026-02-27: Initial creation (STORY-021)

TODO:
- None
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field


class Provider(str, enum.Enum):
    """Telemetry vendor identifier, also stored on Plant and Device rows."""

    HUAWEI = "huawei"
    GROWATT = "growatt"
    SOLIS = "solis"


class PlantHealth(int, enum.Enum):
    """Plant health state as stored in the ``plants.health_state`` column."""

    DISCONNECTED = 1
    FAULTY = 2
    HEALTHY = 3


class Severity(str, enum.Enum):
    """Alert severity tiers, ordered from least to most severe."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class PlantInfo(BaseModel):
    """A plant (site) as listed by a vendor cloud.

    Attributes:
        plant_id: Vendor plant identifier (stringified).
        name: Display name.
        capacity_kw: Rated capacity in kW, when reported.
        address: Free-text address or city.
        latitude: Site latitude, when reported.
        longitude: Site longitude, when reported.
        health: Vendor status mapped onto :class:`PlantHealth`.
    """

    plant_id: str
    name: str
    capacity_kw: float | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    health: PlantHealth | None = None


class DeviceInfo(BaseModel):
    """An inverter as listed by a vendor cloud.

    Attributes:
        device_id: Vendor device identifier (stringified).
        plant_id: Identifier of the owning plant.
        name: Display name or serial number.
        model: Model / firmware string, when reported.
        device_type: Vendor device-type classifier used for batched
            real-time requests (``"1"``/``"38"`` for Huawei, ``"max"`` /
            ``"sph-s"`` for Growatt, ``"inverter"`` for Solis).
        max_strings: String count when the vendor reports it up front.
    """

    device_id: str
    plant_id: str
    name: str
    model: str | None = None
    device_type: str
    max_strings: int | None = None


class RawDevicePayload(BaseModel):
    """One device's real-time payload exactly as the vendor returned it."""

    device_id: str
    data: dict[str, Any] = Field(default_factory=dict)


class StringReading(BaseModel):
    """A single normalized string measurement.

    The timestamp is not part of the normalized reading; it is injected by
    the caller at persistence time, keeping the normalizers pure.

    Attributes:
        string_number: 1-based string / channel index.
        voltage: String voltage in volts.
        current: String current in amperes.
        power: String power in watts.
    """

    string_number: int = Field(ge=1)
    voltage: float
    current: float
    power: float

