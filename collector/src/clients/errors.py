"""
Exception taxonomy for vendor cloud clients.

Every failure a vendor client surfaces is a :class:`VendorError` subclass,
so callers can classify failures without inspecting vendor payloads:

- TransientVendorError: network errors, timeouts, HTTP 5xx. Retried with
  exponential backoff.
- RateLimitedError: vendor throttling signal. Retried after a longer wait
  with its own budget.
- AuthenticationError: expired or rejected session. One forced
  re-authentication, then propagates.
- PermissionDeniedError / RequestRejectedError: the vendor refused the
  request. Never retried.

CHANGELOG:
- 2026-02-27: Initial creation (STORY-023)

TODO:
- None
"""

from __future__ import annotations


class VendorError(Exception):
    """Base class for all vendor client failures.

    Attributes:
        provider: Provider id of the client that raised (e.g. ``"huawei"``).
        code: Vendor-specific failure code or HTTP status, when known.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        code: int | str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.code = code

    def __str__(self) -> str:
        base = super().__str__()
        if self.code is None:
            return f"[{self.provider}] {base}"
        return f"[{self.provider}] {base} (code={self.code})"


class TransientVendorError(VendorError):
    """Network error, timeout, or HTTP 5xx from the vendor."""

    retryable = True


class RateLimitedError(VendorError):
    """The vendor asked us to slow down.

    Attributes:
        retry_after_s: Seconds to wait before the next attempt, or None
            to let the client apply its vendor default.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        code: int | str | None = None,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message, provider=provider, code=code)
        self.retry_after_s = retry_after_s


class AuthenticationError(VendorError):
    """Session expired or credentials rejected."""


class PermissionDeniedError(VendorError):
    """The account is not allowed to call this endpoint or resource."""


class RequestRejectedError(VendorError):
    """The vendor returned a non-success code for a well-formed HTTP call."""
