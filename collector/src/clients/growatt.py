"""
Growatt OpenAPI client (V1 plant endpoints, V4 device endpoints).

Authentication is a static API token sent in the ``token`` header; there is
no session to refresh.

Response envelopes differ per API generation:

- V1 (GET): ``{"error_code": int, "error_msg": str, "data": ...}``;
  error_code 10012 is the rate-limit signal.
- V4 (form POST): ``{"code": int, "message": str, "data": ...}``;
  code 102 is the rate-limit signal, code 12 is permission denied.

Any other non-zero code is a rejected request. Rate-limit waits are 30s.

CHANGELOG:
- 2026-03-05: Skip records without ids instead of failing the response
- 2026-03-01: V1 device/list fallback for devices missing plantId
- 2026-02-28: Initial creation (STORY-024)

TODO:
- None
"""

from __future__ import annotations

import logging
from typing import Any

from collector.src.clients.base import VendorClient, opt_float, record_id
from collector.src.clients.errors import (
    PermissionDeniedError,
    RateLimitedError,
    RequestRejectedError,
)
from collector.src.models import (
    DeviceInfo,
    PlantHealth,
    PlantInfo,
    Provider,
    RawDevicePayload,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_WAIT_S: float = 30.0

_V1_RATE_LIMIT = 10012
_V4_RATE_LIMIT = 102
_V4_PERMISSION_DENIED = 12

_SN_KEYS = ("serialNum", "deviceSn", "sn")


def map_plant_health(status: Any) -> PlantHealth:
    """Map a Growatt plant status onto :class:`PlantHealth`.

    1 (online) and 3 (battery online) are healthy, 2 is a fault, and
    everything else (waiting, offline, unknown) is disconnected.
    """
    if status in (1, 3):
        return PlantHealth.HEALTHY
    if status == 2:
        return PlantHealth.FAULTY
    return PlantHealth.DISCONNECTED


def map_device_type(device_type: Any) -> str:
    """Collapse Growatt device types onto the normalizer classes."""
    return "sph-s" if device_type == "sph-s" else "max"


class GrowattClient(VendorClient):
    """Growatt OpenAPI client.

    Args:
        token: OpenAPI token.
        **kwargs: Forwarded to :class:`VendorClient`.
    """

    provider = Provider.GROWATT

    def __init__(self, *, token: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._token = token

    def _rate_limit_wait(self, exc: RateLimitedError, attempt: int) -> float:
        if exc.retry_after_s is not None:
            return exc.retry_after_s
        return RATE_LIMIT_WAIT_S

    # ------------------------------------------------------------------
    # Envelopes
    # ------------------------------------------------------------------

    async def _v1_get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._send("GET", path, params=params, headers={"token": self._token})
        body = self._json(response)
        code = body.get("error_code") or 0
        if code == _V1_RATE_LIMIT:
            raise RateLimitedError(f"GET {path} throttled", provider="growatt", code=code)
        if code != 0:
            raise RequestRejectedError(
                f"GET {path}: {body.get('error_msg') or 'unknown error'}",
                provider="growatt",
                code=code,
            )
        return body.get("data") or {}

    async def _v4_post(self, path: str, form: dict[str, str]) -> Any:
        response = await self._send("POST", path, data=form, headers={"token": self._token})
        body = self._json(response)
        code = body.get("code")
        if code == _V4_RATE_LIMIT:
            raise RateLimitedError(f"POST {path} throttled", provider="growatt", code=code)
        if code == _V4_PERMISSION_DENIED:
            raise PermissionDeniedError(f"POST {path} permission denied", provider="growatt", code=code)
        if code is not None and code != 0:
            raise RequestRejectedError(
                f"POST {path}: {body.get('message') or 'unknown error'}",
                provider="growatt",
                code=code,
            )
        return body.get("data")

    # ------------------------------------------------------------------
    # Fetchers
    # ------------------------------------------------------------------

    async def _fetch_plants(self) -> list[PlantInfo]:
        plants: list[PlantInfo] = []
        page = 1
        while True:
            data = await self._v1_get("/v1/plant/list", {"page": page})
            for p in data.get("plants") or []:
                plant_id = record_id(p, "plant_id")
                if plant_id is None:
                    logger.warning("growatt: plant record without plant_id, skipping")
                    continue
                peak_power = p.get("peak_power")
                plants.append(
                    PlantInfo(
                        plant_id=plant_id,
                        name=p.get("name") or plant_id,
                        capacity_kw=opt_float(peak_power) or None,
                        address=p.get("city") or None,
                        health=map_plant_health(p.get("status")),
                    )
                )
            if page >= int(data.get("pages") or 1):
                break
            page += 1
        return plants

    async def _fetch_devices(self, plant_ids: list[str]) -> list[DeviceInfo]:
        data = await self._v4_post("/v4/new-api/queryDeviceList", {})
        if isinstance(data, dict):
            raw_devices = [d for group in data.values() if isinstance(group, list) for d in group]
        else:
            raw_devices = list(data or [])
        raw_devices = [d for d in raw_devices if record_id(d, "deviceSn")]

        plant_of: dict[str, str] = {
            d["deviceSn"]: str(d["plantId"]) for d in raw_devices if d.get("plantId")
        }
        if any(d["deviceSn"] not in plant_of for d in raw_devices):
            await self._map_devices_via_v1(plant_ids, plant_of)

        wanted = set(plant_ids)
        devices: list[DeviceInfo] = []
        for d in raw_devices:
            sn = d["deviceSn"]
            plant_id = plant_of.get(sn)
            if plant_id is None:
                logger.warning("growatt: no plant mapping for device %s, skipping", sn)
                continue
            if plant_id not in wanted:
                continue
            devices.append(
                DeviceInfo(
                    device_id=sn,
                    plant_id=plant_id,
                    name=sn,
                    model=d.get("deviceType") or None,
                    device_type=map_device_type(d.get("deviceType")),
                )
            )
        return devices

    async def _map_devices_via_v1(self, plant_ids: list[str], plant_of: dict[str, str]) -> None:
        """Fill *plant_of* from the per-plant V1 device list."""
        for plant_id in plant_ids:
            try:
                data = await self._v1_get("/v1/device/list", {"plant_id": plant_id})
            except (PermissionDeniedError, RequestRejectedError) as exc:
                logger.warning("growatt: device list for plant %s failed: %s", plant_id, exc)
                continue
            for pd in data.get("devices") or []:
                sn = pd.get("device_sn")
                if sn and sn not in plant_of:
                    plant_of[sn] = plant_id

    async def _fetch_readings(
        self,
        device_ids: list[str],
        device_type: str,
    ) -> list[RawDevicePayload]:
        data = await self._v4_post(
            "/v4/new-api/queryLastData",
            {"deviceType": device_type, "deviceSn": ",".join(device_ids)},
        )
        records = data.get(device_type) or [] if isinstance(data, dict) else []

        payloads: list[RawDevicePayload] = []
        for record in records:
            sn = record_id(record, *_SN_KEYS)
            if sn is None:
                logger.warning("growatt: queryLastData record without serial number")
                continue
            payloads.append(RawDevicePayload(device_id=sn, data=record))
        return payloads

