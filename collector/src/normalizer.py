"""
Pure per-vendor normalizers that turn raw device payloads into StringReadings.

Each vendor exposes string telemetry with its own key pattern:

- Huawei FusionSolar: sparse ``pv{N}_u`` / ``pv{N}_i`` keys, no power field.
- Growatt: ``vString{N}`` / ``currentString{N}`` on MAX inverters, otherwise
  MPPT channels ``vpv{N}`` / ``ipv{N}`` / ``ppv{N}``.
- SolisCloud: ``uPv{N}`` / ``iPv{N}`` / ``pow{N}`` with the channel count
  given by ``dcInputType + 1``.

The normalizers form a closed set keyed by :class:`Provider`; dispatch never
sniffs fields across vendors.  Every normalizer is a pure function of its
arguments: no I/O, no clock, same payload in, same readings out.

Only channels with voltage or current above :data:`NEAR_ZERO` are emitted,
ordered by string number.  Power is taken from the payload when the vendor
supplies it, otherwise computed as voltage x current.

CHANGELOG:
- 2026-03-05: String count from payload channel capacity, not live strings
- 2026-03-04: Read Solis channels from payload keys when dcInputType is absent
- 2026-03-01: Growatt MPPT fallback for SPH-S and MAX without string sensors
- 2026-02-27: Initial creation (STORY-022)

TODO:
- None
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Protocol

from collector.src.models import Provider, StringReading

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NEAR_ZERO: float = 0.01
"""Voltage/current at or below this value counts as "no signal"."""

MAX_CHANNELS: int = 32
"""Upper bound on string channels read for any vendor."""

GROWATT_MPPT_CHANNELS: dict[str, int] = {
    "max": 16,
    "sph-s": 3,
}
"""Maximum MPPT channels per Growatt device class."""

_HUAWEI_KEY = re.compile(r"^pv(\d+)_[ui]$")
_SOLIS_KEY = re.compile(r"^[ui]Pv(\d+)$")


class NormalizationError(ValueError):
    """Raised when a payload cannot be interpreted for its device class."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _num(value: Any) -> float:
    """Parse a vendor value into a float; missing or garbage values are 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(parsed) or math.isinf(parsed):
        return 0.0
    return parsed


def _has_signal(voltage: float, current: float) -> bool:
    return voltage > NEAR_ZERO or current > NEAR_ZERO


def _reading(
    string_number: int,
    voltage: float,
    current: float,
    power: float | None = None,
) -> StringReading:
    """Build a reading, computing power when the vendor did not supply it."""
    if not power:
        power = voltage * current
    return StringReading(
        string_number=string_number,
        voltage=voltage,
        current=current,
        power=power,
    )


def _highest_index(data: dict[str, Any], pattern: re.Pattern[str]) -> int:
    """Return the highest channel index among keys matching *pattern*."""
    highest = 0
    for key in data:
        match = pattern.match(key)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def detect_max_strings(readings: list[StringReading], capacity: int = 0) -> int:
    """Return a device's string count.

    The payload's channel *capacity* (see :func:`string_capacity`) counts
    strings that are dark right now; the highest string number read covers
    vendors that report no capacity.  0 when neither is known.
    """
    return max(capacity, max((r.string_number for r in readings), default=0))


# ---------------------------------------------------------------------------
# Normalizer variants
# ---------------------------------------------------------------------------


class Normalizer(Protocol):
    """Contract shared by every vendor normalizer."""

    provider: Provider

    def normalize(
        self,
        data: dict[str, Any],
        *,
        device_type: str,
        max_strings: int | None = None,
    ) -> list[StringReading]: ...

    def capacity(self, data: dict[str, Any], *, device_type: str) -> int: ...


class HuaweiNormalizer:
    """FusionSolar ``getDevRealKpi`` ``dataItemMap`` -> readings."""

    provider = Provider.HUAWEI

    def capacity(self, data: dict[str, Any], *, device_type: str) -> int:
        """Highest ``pv{N}_u`` / ``pv{N}_i`` index present, live or not."""
        return min(_highest_index(data, _HUAWEI_KEY), MAX_CHANNELS)

    def normalize(
        self,
        data: dict[str, Any],
        *,
        device_type: str,
        max_strings: int | None = None,
    ) -> list[StringReading]:
        channels = min(
            max(self.capacity(data, device_type=device_type), max_strings or 0),
            MAX_CHANNELS,
        )
        readings: list[StringReading] = []
        for n in range(1, channels + 1):
            voltage = _num(data.get(f"pv{n}_u"))
            current = _num(data.get(f"pv{n}_i"))
            if _has_signal(voltage, current):
                readings.append(_reading(n, voltage, current))
        return readings


class GrowattNormalizer:
    """Growatt V4 ``queryLastData`` record -> readings.

    MAX inverters with string sensors report per-string values, which give
    the best granularity.  When none of them is live (or the device is an
    SPH-S hybrid) the MPPT channels are used instead.
    """

    provider = Provider.GROWATT

    def capacity(self, data: dict[str, Any], *, device_type: str) -> int:
        """Growatt payloads do not state a string count."""
        return 0

    def normalize(
        self,
        data: dict[str, Any],
        *,
        device_type: str,
        max_strings: int | None = None,
    ) -> list[StringReading]:
        mppt_channels = GROWATT_MPPT_CHANNELS.get(device_type)
        if mppt_channels is None:
            raise NormalizationError(f"Unknown Growatt device type '{device_type}'")

        readings: list[StringReading] = []
        if device_type == "max":
            for n in range(1, MAX_CHANNELS + 1):
                voltage = _num(data.get(f"vString{n}"))
                current = _num(data.get(f"currentString{n}"))
                if _has_signal(voltage, current):
                    readings.append(_reading(n, voltage, current))

        if readings:
            return readings

        for n in range(1, mppt_channels + 1):
            voltage = _num(data.get(f"vpv{n}"))
            current = _num(data.get(f"ipv{n}"))
            if _has_signal(voltage, current):
                readings.append(_reading(n, voltage, current, _num(data.get(f"ppv{n}"))))
        return readings


class SolisNormalizer:
    """SolisCloud ``inverterDetail`` record -> readings."""

    provider = Provider.SOLIS

    def capacity(self, data: dict[str, Any], *, device_type: str) -> int:
        """``dcInputType + 1``, or the highest ``uPv{N}`` / ``iPv{N}`` index."""
        if data.get("dcInputType") is not None:
            channels = int(_num(data["dcInputType"])) + 1
        else:
            channels = _highest_index(data, _SOLIS_KEY)
        return min(channels, MAX_CHANNELS)

    def normalize(
        self,
        data: dict[str, Any],
        *,
        device_type: str,
        max_strings: int | None = None,
    ) -> list[StringReading]:
        channels = min(
            max(self.capacity(data, device_type=device_type), max_strings or 0),
            MAX_CHANNELS,
        )

        readings: list[StringReading] = []
        for n in range(1, channels + 1):
            voltage = _num(data.get(f"uPv{n}"))
            current = _num(data.get(f"iPv{n}"))
            if _has_signal(voltage, current):
                readings.append(_reading(n, voltage, current, _num(data.get(f"pow{n}"))))
        return readings


NORMALIZERS: dict[Provider, Normalizer] = {
    Provider.HUAWEI: HuaweiNormalizer(),
    Provider.GROWATT: GrowattNormalizer(),
    Provider.SOLIS: SolisNormalizer(),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def string_capacity(provider: Provider, data: dict[str, Any], *, device_type: str) -> int:
    """Return how many string channels *data* says the device has, or 0.

    Counts channels whether or not they carry current, so a reading taken
    at dawn reports the same capacity as one taken at noon.
    """
    return NORMALIZERS[provider].capacity(data, device_type=device_type)


def normalize(
    provider: Provider,
    data: dict[str, Any],
    *,
    device_type: str,
    max_strings: int | None = None,
) -> list[StringReading]:
    """Convert one device's raw payload into canonical string readings.

    This is a **pure function**: it performs no I/O and has no side effects.

    Args:
        provider: Vendor that produced the payload; selects the normalizer.
        data: The vendor's raw per-device payload.
        device_type: Vendor device-type classifier of the device.
        max_strings: String count already known for the device, if any.
            Widens the channel count when the payload reports fewer.

    Returns:
        Readings for every live channel, ordered by string number.

    Raises:
        NormalizationError: If the payload cannot be interpreted for the
            given device class.
    """
    return NORMALIZERS[provider].normalize(
        data,
        device_type=device_type,
        max_strings=max_strings,
    )
