"""
Huawei FusionSolar Northbound (SmartPVMS thirdData) client.

Session model: ``POST /thirdData/login`` returns an ``XSRF-TOKEN`` cookie
that must be echoed as a header on every call. The token is valid for
30 minutes; it is refreshed 60 seconds early, and reactively whenever the
API answers with failCode 305 or 401. The previous session is logged out
before a proactive re-login.

Response envelope: ``{"success": bool, "failCode": int, "data": ...}``.

- failCode 305 / 401: session expired -> AuthenticationError.
- failCode 407 / 429: throttled -> RateLimitedError, wait
  ``min(5s * attempt, 30s)``.
- any other non-zero failCode: RequestRejectedError.

CHANGELOG:
- 2026-03-05: Skip records without ids instead of failing the response
- 2026-03-01: Paginate station list via pageCount
- 2026-02-27: Initial creation (STORY-023)

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from typing import Any

from collector.src.clients.base import VendorClient, chunked, opt_float, record_id
from collector.src.clients.errors import (
    AuthenticationError,
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

TOKEN_VALIDITY_S: float = 30 * 60 - 60
"""Session lifetime minus a 60 second safety buffer."""

INVERTER_TYPE_IDS: frozenset[int] = frozenset({1, 38})
"""devTypeId values of string and residential inverters."""

PAGE_SIZE: int = 100

_AUTH_FAIL_CODES = frozenset({305, 401})
_RATE_LIMIT_FAIL_CODES = frozenset({407, 429})
_XSRF_COOKIE = re.compile(r"XSRF-TOKEN=([^;]+)")


class HuaweiClient(VendorClient):
    """FusionSolar client with XSRF session handling.

    Args:
        username: Northbound API account user name.
        system_code: Northbound API account system code (password).
        **kwargs: Forwarded to :class:`VendorClient`.
    """

    provider = Provider.HUAWEI

    def __init__(self, *, username: str, system_code: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._username = username
        self._system_code = system_code
        self._xsrf_token: str | None = None
        self._token_created_at = 0.0

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def _session_valid(self) -> bool:
        if self._xsrf_token is None:
            return False
        return self._clock() - self._token_created_at < TOKEN_VALIDITY_S

    def _invalidate_session(self) -> None:
        self._xsrf_token = None

    async def _authenticate(self) -> None:
        if self._xsrf_token is not None:
            await self._close_session()

        response = await self._send(
            "POST",
            "/thirdData/login",
            json={"userName": self._username, "systemCode": self._system_code},
        )
        body = self._json(response)
        fail_code = body.get("failCode", 0)
        if not body.get("success") and fail_code != 0:
            raise AuthenticationError(
                f"Login failed: {body.get('message') or 'unknown error'}",
                provider=self.provider.value,
                code=fail_code,
            )

        token = response.cookies.get("XSRF-TOKEN")
        if token is None:
            match = _XSRF_COOKIE.search(response.headers.get("set-cookie", ""))
            token = match.group(1) if match else None
        if token is None:
            raise AuthenticationError(
                "XSRF-TOKEN not found in login response cookies",
                provider=self.provider.value,
            )

        self._xsrf_token = token
        self._token_created_at = self._clock()
        logger.info("huawei: login successful")

    async def _close_session(self) -> None:
        if self._xsrf_token is None:
            return
        token, self._xsrf_token = self._xsrf_token, None
        await self._send("POST", "/thirdData/logout", headers={"XSRF-TOKEN": token})
        logger.info("huawei: logged out")

    def _rate_limit_wait(self, exc: RateLimitedError, attempt: int) -> float:
        if exc.retry_after_s is not None:
            return exc.retry_after_s
        return min(5.0 * attempt, 30.0)

    # ------------------------------------------------------------------
    # Envelope
    # ------------------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        """POST a thirdData call and unwrap ``data``, mapping failCodes."""
        headers = {"XSRF-TOKEN": self._xsrf_token or ""}
        response = await self._send("POST", path, json=payload, headers=headers)
        body = self._json(response)

        fail_code = body.get("failCode", 0)
        if fail_code in _AUTH_FAIL_CODES:
            raise AuthenticationError("Session expired", provider="huawei", code=fail_code)
        if fail_code in _RATE_LIMIT_FAIL_CODES:
            raise RateLimitedError(f"{path} throttled", provider="huawei", code=fail_code)
        if not body.get("success") and fail_code != 0:
            raise RequestRejectedError(
                f"{path}: {body.get('message') or 'unknown error'}",
                provider="huawei",
                code=fail_code,
            )
        return body.get("data")

    # ------------------------------------------------------------------
    # Fetchers
    # ------------------------------------------------------------------

    async def _fetch_plants(self) -> list[PlantInfo]:
        plants: list[PlantInfo] = []
        page_no = 1
        while True:
            data = await self._post(
                "/thirdData/stations", {"pageNo": page_no, "pageSize": PAGE_SIZE}
            )
            data = data or {}
            for p in data.get("list") or []:
                plant_id = record_id(p, "plantCode")
                if plant_id is None:
                    logger.warning("huawei: station record without plantCode, skipping")
                    continue
                health = p.get("healthState")
                plants.append(
                    PlantInfo(
                        plant_id=plant_id,
                        name=p.get("plantName") or plant_id,
                        capacity_kw=opt_float(p.get("capacity")),
                        address=p.get("plantAddress") or None,
                        latitude=opt_float(p.get("latitude")),
                        longitude=opt_float(p.get("longitude")),
                        health=PlantHealth(health) if health in (1, 2, 3) else None,
                    )
                )
            if page_no >= int(data.get("pageCount") or 1):
                break
            page_no += 1
        return plants

    async def _fetch_devices(self, plant_ids: list[str]) -> list[DeviceInfo]:
        devices: list[DeviceInfo] = []
        for chunk in chunked(sorted(plant_ids), PAGE_SIZE):
            data = await self._post(
                "/thirdData/getDevList", {"stationCodes": ",".join(chunk)}
            )
            for d in data or []:
                type_id = d.get("devTypeId") if isinstance(d, dict) else None
                if type_id not in INVERTER_TYPE_IDS:
                    continue
                device_id = record_id(d, "id")
                plant_id = record_id(d, "stationCode")
                if device_id is None or plant_id is None:
                    logger.warning("huawei: device record without id or stationCode, skipping")
                    continue
                devices.append(
                    DeviceInfo(
                        device_id=device_id,
                        plant_id=plant_id,
                        name=d.get("devName") or device_id,
                        model=d.get("softwareVersion") or None,
                        device_type=str(type_id),
                    )
                )
        return devices

    async def _fetch_readings(
        self,
        device_ids: list[str],
        device_type: str,
    ) -> list[RawDevicePayload]:
        data = await self._post(
            "/thirdData/getDevRealKpi",
            {"devIds": ",".join(device_ids), "devTypeId": int(device_type)},
        )
        payloads: list[RawDevicePayload] = []
        for d in data or []:
            device_id = record_id(d, "devId")
            if device_id is None:
                logger.warning("huawei: getDevRealKpi record without devId, skipping")
                continue
            item_map = d.get("dataItemMap")
            payloads.append(
                RawDevicePayload(
                    device_id=device_id,
                    data=item_map if isinstance(item_map, dict) else {},
                )
            )
        return payloads
