"""
Shared machinery for vendor cloud clients.

:class:`VendorClient` implements the public three-call contract every vendor
exposes to the orchestrator:

- list_plants(): plant topology, cached for 1 hour.
- list_devices(plant_ids): inverter topology, cached for 1 hour.
- get_latest_readings(device_ids, device_type): raw real-time payloads,
  chunked at 100 ids per request and cached for 5 minutes.

Subclasses supply the vendor-specific ``_fetch_*`` coroutines and, when the
vendor uses a session, the ``_authenticate`` / ``_session_valid`` hooks.
Every fetch goes through :meth:`VendorClient._with_retry`, which applies:

- exponential backoff (1s -> 2s -> 4s) on TransientVendorError, bounded by
  ``max_retries`` attempts;
- a separate, longer wait on RateLimitedError with its own budget;
- exactly one forced re-authentication on AuthenticationError;
- immediate propagation of every other VendorError.

The sleep function and the monotonic clock are injectable so backoff and
cache expiry are testable without real waiting.

CHANGELOG:
- 2026-03-05: Readings cache bypass, expired-entry pruning, record_id/opt_float helpers
- 2026-03-02: Honour Retry-After on HTTP 429 for every vendor
- 2026-02-27: Initial creation (STORY-023)

TODO:
- None
"""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable, Sequence
from typing import Any, TypeVar

import httpx

from collector.src.clients.errors import (
    AuthenticationError,
    PermissionDeniedError,
    RateLimitedError,
    RequestRejectedError,
    TransientVendorError,
    VendorError,
)
from collector.src.models import DeviceInfo, PlantInfo, Provider, RawDevicePayload

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

INITIAL_BACKOFF_S: float = 1.0
"""First transient-retry delay; doubles on each further attempt."""

DEFAULT_RATE_LIMIT_WAIT_S: float = 30.0
"""Wait applied to a rate-limit signal that carries no explicit delay."""

RATE_LIMIT_BUDGET: int = 3
"""Rate-limit waits allowed per call before the error propagates."""

TOPOLOGY_TTL_S: float = 3600.0
"""Cache lifetime for plant and device listings."""

READINGS_TTL_S: float = 300.0
"""Cache lifetime for real-time reading payloads."""

READING_BATCH_SIZE: int = 100
"""Maximum device ids per real-time request."""


# ---------------------------------------------------------------------------
# TTL cache
# ---------------------------------------------------------------------------


class TTLCache:
    """Minimal in-memory cache with per-entry expiry on a monotonic clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any, ttl_s: float) -> None:
        """Store *value* for *ttl_s* seconds and drop every expired entry."""
        now = self._clock()
        for stale in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[stale]
        self._entries[key] = (now + ttl_s, value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive lists of at most *size* elements."""
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in seconds; dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)



def opt_float(value: Any) -> float | None:
    """Parse an optional vendor number; missing or garbage values are None."""
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def record_id(record: Any, *keys: str) -> str | None:
    """Return the first non-empty id among *keys* of a vendor record, as a string.

    None for records that are not objects or carry none of the keys; callers
    skip such records instead of failing the whole response.
    """
    if not isinstance(record, dict):
        return None
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return str(value)
    return None


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------


class VendorClient(abc.ABC):
    """Base class for one vendor cloud API.

    Args:
        base_url: Vendor API base URL (HTTPS).
        timeout_s: HTTP timeout per request.
        max_retries: Attempts per call for transient failures.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
        sleep: Coroutine used for backoff waits.
        clock: Monotonic clock used for cache and session expiry.

    Usage::

        async with HuaweiClient(base_url=..., username=..., system_code=...) as client:
            plants = await client.list_plants()
    """

    provider: Provider
    reading_batch_size: int = READING_BATCH_SIZE

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._sleep = sleep
        self._clock = clock
        self._cache = TTLCache(clock)
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_s,
            transport=transport,
            verify=True,
        )

    async def __aenter__(self) -> VendorClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """End the vendor session (when any) and close the HTTP client."""
        try:
            await self._close_session()
        except VendorError as exc:
            logger.warning("%s: session close failed: %s", self.provider.value, exc)
        finally:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_plants(self, *, use_cache: bool = True) -> list[PlantInfo]:
        """Return every plant visible to the account.

        Args:
            use_cache: When False the cache is bypassed (and refreshed),
                used by the per-cycle health refresh.
        """
        key = ("plants",)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
        plants = await self._with_retry("list_plants", self._fetch_plants)
        self._cache.set(key, plants, TOPOLOGY_TTL_S)
        return plants

    async def list_devices(self, plant_ids: Sequence[str]) -> list[DeviceInfo]:
        """Return every inverter belonging to *plant_ids*."""
        if not plant_ids:
            return []
        key = ("devices", tuple(sorted(plant_ids)))
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        devices = await self._with_retry(
            "list_devices", lambda: self._fetch_devices(list(plant_ids))
        )
        self._cache.set(key, devices, TOPOLOGY_TTL_S)
        return devices

    async def get_latest_readings(
        self,
        device_ids: Sequence[str],
        device_type: str,
        *,
        use_cache: bool = True,
    ) -> list[RawDevicePayload]:
        """Return the latest raw payload for each device that has one.

        Requests are chunked at ``reading_batch_size`` ids; a failing
        chunk raises, leaving the caller to decide how to isolate it.

        Args:
            device_ids: Vendor ids of the devices to read.
            device_type: Vendor device-type classifier shared by the ids.
            use_cache: When False every chunk is fetched from the vendor
                (and the cache refreshed), used by the poll cycle.
        """
        payloads: list[RawDevicePayload] = []
        for chunk in chunked(list(device_ids), self.reading_batch_size):
            key = ("readings", device_type, tuple(sorted(chunk)))
            cached = self._cache.get(key) if use_cache else None
            if cached is None:
                cached = await self._with_retry(
                    "get_latest_readings",
                    lambda chunk=chunk: self._fetch_readings(chunk, device_type),
                )
                self._cache.set(key, cached, READINGS_TTL_S)
            payloads.extend(cached)
        return payloads

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Vendor hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def _fetch_plants(self) -> list[PlantInfo]: ...

    @abc.abstractmethod
    async def _fetch_devices(self, plant_ids: list[str]) -> list[DeviceInfo]: ...

    @abc.abstractmethod
    async def _fetch_readings(
        self,
        device_ids: list[str],
        device_type: str,
    ) -> list[RawDevicePayload]: ...

    def _session_valid(self) -> bool:
        """Return True when no (re-)authentication is needed."""
        return True

    async def _authenticate(self) -> None:
        """Establish a vendor session. Stateless vendors do nothing."""

    def _invalidate_session(self) -> None:
        """Forget the current session so the next call re-authenticates."""

    async def _close_session(self) -> None:
        """Log out of the vendor session, when the vendor has one."""

    def _rate_limit_wait(self, exc: RateLimitedError, attempt: int) -> float:
        """Return the wait before retrying after the *attempt*-th rate limit."""
        if exc.retry_after_s is not None:
            return exc.retry_after_s
        return DEFAULT_RATE_LIMIT_WAIT_S

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run *call* under the retry, rate-limit and re-auth policy.

        Args:
            operation: Name used in log lines.
            call: Zero-argument coroutine factory performing one attempt.

        Returns:
            The value returned by the first successful attempt.

        Raises:
            VendorError: The last failure once its budget is exhausted, or
                any non-retryable failure immediately.
        """
        name = self.provider.value
        attempt = 0
        rate_limited = 0
        reauthenticated = False

        while True:
            try:
                if not self._session_valid():
                    await self._authenticate()
                return await call()
            except AuthenticationError:
                if reauthenticated:
                    raise
                reauthenticated = True
                logger.warning("%s %s: session rejected, re-authenticating", name, operation)
                self._invalidate_session()
            except RateLimitedError as exc:
                rate_limited += 1
                if rate_limited > RATE_LIMIT_BUDGET:
                    raise
                wait_s = self._rate_limit_wait(exc, rate_limited)
                logger.warning(
                    "%s %s: rate limited, waiting %.1fs (%d/%d)",
                    name,
                    operation,
                    wait_s,
                    rate_limited,
                    RATE_LIMIT_BUDGET,
                )
                await self._sleep(wait_s)
            except TransientVendorError as exc:
                attempt += 1
                if attempt >= self._max_retries:
                    raise
                delay_s = INITIAL_BACKOFF_S * 2 ** (attempt - 1)
                logger.warning(
                    "%s %s: transient failure (%s), retry %d/%d in %.1fs",
                    name,
                    operation,
                    exc,
                    attempt,
                    self._max_retries - 1,
                    delay_s,
                )
                await self._sleep(delay_s)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request and map transport/HTTP failures to VendorErrors."""
        name = self.provider.value
        try:
            response = await self._http.request(method, path, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientVendorError(
                f"{method} {path} failed: {exc.__class__.__name__}", provider=name
            ) from exc

        status = response.status_code
        if status == 429:
            raise RateLimitedError(
                f"{method} {path} throttled",
                provider=name,
                code=status,
                retry_after_s=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 500:
            raise TransientVendorError(f"{method} {path} server error", provider=name, code=status)
        if status == 401:
            raise AuthenticationError(f"{method} {path} unauthorized", provider=name, code=status)
        if status == 403:
            raise PermissionDeniedError(f"{method} {path} forbidden", provider=name, code=status)
        if status >= 400:
            raise RequestRejectedError(f"{method} {path} rejected", provider=name, code=status)
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body; garbage bodies count as transient."""
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientVendorError(
                f"Non-JSON body from {response.request.url.path}",
                provider=self.provider.value,
                code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise TransientVendorError(
                f"Unexpected body type from {response.request.url.path}",
                provider=self.provider.value,
            )
        return body
