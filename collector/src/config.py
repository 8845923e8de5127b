"""
Collector daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded credentials.

A vendor provider is enabled only when all of its credentials are set;
the orchestrator registers clients for :meth:`CollectorSettings.enabled_providers`.

CHANGELOG:
- 2026-03-03: Add ALERT_LOW_LIGHT_EXPIRY_HOURS and SITE_UTC_OFFSET_MINUTES
- 2026-02-27: Initial creation (STORY-020)

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings

from collector.src.models import Provider


class CollectorSettings(BaseSettings):
    """String telemetry collector configuration.

    Attributes:
        database_url: SQLAlchemy async database URL.
        poll_interval_s: Seconds between poll cycles per provider (min 60).
        retention_days: Raw readings older than this are purged.
        retention_interval_s: Seconds between retention runs.
        site_utc_offset_minutes: Fixed UTC offset used for hour/day buckets.
        alert_low_light_expiry_hours: When set, open alerts older than this
            are resolved during low-light cycles. Disabled when unset.
        health_path: Path of the JSON health file.
        huawei_api_url: FusionSolar Northbound base URL (HTTPS).
        huawei_username: FusionSolar API account user name.
        huawei_password: FusionSolar API account system code.
        growatt_api_url: Growatt OpenAPI base URL (HTTPS).
        growatt_api_token: Growatt OpenAPI token.
        solis_api_url: SolisCloud base URL (HTTPS).
        solis_api_id: SolisCloud API key id.
        solis_api_secret: SolisCloud API key secret.
        vendor_max_retries: Attempts per vendor call for transient failures.
        vendor_timeout_s: HTTP timeout per vendor request.
    """

    database_url: str
    poll_interval_s: int = 300
    retention_days: int = 30
    retention_interval_s: int = 86400
    site_utc_offset_minutes: int = 0
    alert_low_light_expiry_hours: float | None = None
    health_path: str = "/data/health.json"

    huawei_api_url: str = "https://intl.fusionsolar.huawei.com"
    huawei_username: str = ""
    huawei_password: str = ""

    growatt_api_url: str = "https://openapi.growatt.com"
    growatt_api_token: str = ""

    solis_api_url: str = "https://www.soliscloud.com:13333"
    solis_api_id: str = ""
    solis_api_secret: str = ""

    vendor_max_retries: int = 3
    vendor_timeout_s: float = 30.0

    @field_validator("huawei_api_url", "growatt_api_url", "solis_api_url")
    @classmethod
    def vendor_url_must_be_https(cls, v: str) -> str:
        """Validate that vendor base URLs use HTTPS.

        Vendor credentials travel in headers and bodies; plain HTTP URLs are
        rejected at startup.
        """
        if not v.startswith("https://"):
            raise ValueError(f"Vendor API URL must use HTTPS (got: '{v[:30]}...')")
        return v.rstrip("/")

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_respect_vendor_quotas(cls, v: int) -> int:
        """Validate poll interval keeps vendor cloud quotas intact (min 60s)."""
        if v < 60:
            raise ValueError("POLL_INTERVAL_S must be >= 60")
        return v

    @field_validator("retention_days")
    @classmethod
    def retention_days_must_be_positive(cls, v: int) -> int:
        """Validate retention keeps at least one day of readings."""
        if v < 1:
            raise ValueError("RETENTION_DAYS must be >= 1")
        return v

    @field_validator("retention_interval_s")
    @classmethod
    def retention_interval_must_be_positive(cls, v: int) -> int:
        """Validate retention interval is positive."""
        if v < 1:
            raise ValueError("RETENTION_INTERVAL_S must be >= 1")
        return v

    @field_validator("site_utc_offset_minutes")
    @classmethod
    def site_offset_must_be_valid(cls, v: int) -> int:
        """Validate the site offset lies within real-world UTC offsets."""
        if v < -720 or v > 840:
            raise ValueError("SITE_UTC_OFFSET_MINUTES must be between -720 and 840")
        return v

    @field_validator("alert_low_light_expiry_hours")
    @classmethod
    def low_light_expiry_must_be_positive(cls, v: float | None) -> float | None:
        """Validate the low-light expiry window, when set, is positive."""
        if v is not None and v <= 0:
            raise ValueError("ALERT_LOW_LIGHT_EXPIRY_HOURS must be > 0")
        return v

    @field_validator("vendor_max_retries")
    @classmethod
    def vendor_max_retries_must_be_valid(cls, v: int) -> int:
        """Validate retry budget is between 1 and 10."""
        if v < 1 or v > 10:
            raise ValueError("VENDOR_MAX_RETRIES must be >= 1 and <= 10")
        return v

    @field_validator("vendor_timeout_s")
    @classmethod
    def vendor_timeout_must_be_positive(cls, v: float) -> float:
        """Validate HTTP timeout is positive."""
        if v <= 0:
            raise ValueError("VENDOR_TIMEOUT_S must be > 0")
        return v

    def enabled_providers(self) -> list[Provider]:
        """Return providers whose credentials are fully configured."""
        providers: list[Provider] = []
        if self.huawei_username and self.huawei_password:
            providers.append(Provider.HUAWEI)
        if self.growatt_api_token:
            providers.append(Provider.GROWATT)
        if self.solis_api_id and self.solis_api_secret:
            providers.append(Provider.SOLIS)
        return providers

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
