"""
SolisCloud platform API client.

Every request is a JSON POST signed with HMAC-SHA1::

    stringToSign = "POST\\n" + Content-MD5 + "\\napplication/json\\n" + Date + "\\n" + path
    Authorization: API {api_id}:{base64(hmac_sha1(secret, stringToSign))}

The signed content type is ``application/json`` without charset, while the
header actually sent carries ``;charset=UTF-8``. SolisCloud allows roughly
two requests per second per key, so calls are spaced at least 520 ms apart.

Response envelope: ``{"success": bool, "code": "0", "msg": str, "data": ...}``;
any code other than ``"0"`` is a rejected request.

Inverter detail has no batch endpoint, so real-time reads are chunked one
device per request.

CHANGELOG:
- 2026-03-05: Skip records without ids instead of failing the response
- 2026-03-01: Paginate station and inverter lists using page.total
- 2026-02-28: Initial creation (STORY-025)

TODO:
- None
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from email.utils import formatdate
from typing import Any

from collector.src.clients.base import VendorClient, opt_float, record_id
from collector.src.clients.errors import RequestRejectedError
from collector.src.models import (
    DeviceInfo,
    PlantHealth,
    PlantInfo,
    Provider,
    RawDevicePayload,
)

logger = logging.getLogger(__name__)

MIN_REQUEST_SPACING_S: float = 0.52
"""Minimum gap between two signed requests."""

PAGE_SIZE: int = 100

DEVICE_TYPE: str = "inverter"
"""Single device-type classifier used for SolisCloud inverters."""

_SIGN_CONTENT_TYPE = "application/json"
_SEND_CONTENT_TYPE = "application/json;charset=UTF-8"

_STATION_STATE = {
    1: PlantHealth.HEALTHY,
    2: PlantHealth.DISCONNECTED,
    3: PlantHealth.FAULTY,
}


def sign_request(
    *,
    api_id: str,
    api_secret: str,
    body: bytes,
    path: str,
    date: str,
) -> dict[str, str]:
    """Build the signed header set for one SolisCloud request.

    Args:
        api_id: API key id.
        api_secret: API key secret.
        body: Exact request body bytes.
        path: Request path, e.g. ``/v1/api/userStationList``.
        date: RFC 1123 GMT date string sent in the ``Date`` header.

    Returns:
        Headers to send with the request.
    """
    content_md5 = base64.b64encode(hashlib.md5(body).digest()).decode("ascii")
    string_to_sign = f"POST\n{content_md5}\n{_SIGN_CONTENT_TYPE}\n{date}\n{path}"
    signature = base64.b64encode(
        hmac.new(api_secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1).digest()
    ).decode("ascii")
    return {
        "Content-Type": _SEND_CONTENT_TYPE,
        "Content-MD5": content_md5,
        "Date": date,
        "Authorization": f"API {api_id}:{signature}",
    }


class SolisClient(VendorClient):
    """SolisCloud client with request signing and spacing.

    Args:
        api_id: API key id.
        api_secret: API key secret.
        wall_clock: Epoch-seconds clock used for the signed ``Date`` header.
        **kwargs: Forwarded to :class:`VendorClient`.
    """

    provider = Provider.SOLIS
    reading_batch_size = 1

    def __init__(
        self,
        *,
        api_id: str,
        api_secret: str,
        wall_clock: Callable[[], float] = time.time,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._api_id = api_id
        self._api_secret = api_secret
        self._wall_clock = wall_clock
        self._last_request_at: float | None = None

    async def _space_requests(self) -> None:
        if self._last_request_at is not None:
            elapsed = self._clock() - self._last_request_at
            if elapsed < MIN_REQUEST_SPACING_S:
                await self._sleep(MIN_REQUEST_SPACING_S - elapsed)
        self._last_request_at = self._clock()

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        """Sign, space and send one call; unwrap ``data``."""
        await self._space_requests()
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        headers = sign_request(
            api_id=self._api_id,
            api_secret=self._api_secret,
            body=body,
            path=path,
            date=formatdate(self._wall_clock(), usegmt=True),
        )
        response = await self._send("POST", path, content=body, headers=headers)
        envelope = self._json(response)

        code = str(envelope.get("code"))
        if code != "0":
            raise RequestRejectedError(
                f"{path}: {envelope.get('msg') or 'unknown error'}",
                provider="solis",
                code=code,
            )
        return envelope.get("data")

    async def _paged_records(self, path: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
        """Collect ``data.page.records`` across pages until ``total`` is reached."""
        records: list[dict[str, Any]] = []
        page_no = 1
        while True:
            data = await self._post(path, {**payload, "pageNo": page_no, "pageSize": PAGE_SIZE})
            page = (data or {}).get("page") or {}
            batch = page.get("records") or []
            records.extend(batch)
            total = int(page.get("total") or 0)
            if not batch or len(records) >= total:
                return records
            page_no += 1

    # ------------------------------------------------------------------
    # Fetchers
    # ------------------------------------------------------------------

    async def _fetch_plants(self) -> list[PlantInfo]:
        plants: list[PlantInfo] = []
        for s in await self._paged_records("/v1/api/userStationList", {}):
            plant_id = record_id(s, "id")
            if plant_id is None:
                logger.warning("solis: station record without id, skipping")
                continue
            plants.append(
                PlantInfo(
                    plant_id=plant_id,
                    name=s.get("stationName") or plant_id,
                    capacity_kw=opt_float(s.get("capacity")) or None,
                    address=s.get("addr") or None,
                    latitude=opt_float(s.get("latitude")) or None,
                    longitude=opt_float(s.get("longitude")) or None,
                    health=_STATION_STATE.get(s.get("state"), PlantHealth.DISCONNECTED),
                )
            )
        return plants

    async def _fetch_devices(self, plant_ids: list[str]) -> list[DeviceInfo]:
        devices: list[DeviceInfo] = []
        for plant_id in plant_ids:
            records = await self._paged_records("/v1/api/inverterList", {"stationId": plant_id})
            for inv in records:
                device_id = record_id(inv, "id")
                if device_id is None:
                    logger.warning("solis: inverter record without id, skipping")
                    continue
                dc_input_type = opt_float(inv.get("dcInputType"))
                devices.append(
                    DeviceInfo(
                        device_id=device_id,
                        plant_id=record_id(inv, "stationId") or plant_id,
                        name=inv.get("sn") or device_id,
                        device_type=DEVICE_TYPE,
                        max_strings=int(dc_input_type) + 1 if dc_input_type is not None else None,
                    )
                )
        return devices

    async def _fetch_readings(
        self,
        device_ids: list[str],
        device_type: str,
    ) -> list[RawDevicePayload]:
        payloads: list[RawDevicePayload] = []
        for device_id in device_ids:
            data = await self._post("/v1/api/inverterDetail", {"id": device_id, "sn": ""})
            if not data or not isinstance(data, dict):
                logger.warning("solis: empty inverterDetail for device %s", device_id)
                continue
            payloads.append(RawDevicePayload(device_id=device_id, data=data))
        return payloads
