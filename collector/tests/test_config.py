"""
Unit tests for collector configuration (CollectorSettings).

Tests verify:
- Config loads from environment variables with correct defaults.
- DATABASE_URL is required.
- Vendor URLs must be HTTPS; a trailing slash is stripped.
- Numeric constraints are enforced (poll interval, retention, offset,
  low-light expiry, vendor retries and timeout).
- A provider is enabled only when all of its credentials are set.

CHANGELOG:
- 2026-03-03: Cover SITE_UTC_OFFSET_MINUTES and ALERT_LOW_LIGHT_EXPIRY_HOURS
- 2026-02-27: Initial creation (STORY-020)

TODO:
- None
"""

import pytest
from pydantic import ValidationError

from collector.src.config import CollectorSettings
from collector.src.models import Provider


class TestCollectorSettingsLoadsFromEnv:
    """Config loads all values from environment variables."""

    def test_loads_all_env_vars(self, env_vars_full: dict[str, str]) -> None:
        settings = CollectorSettings()

        assert settings.database_url == env_vars_full["DATABASE_URL"]
        assert settings.poll_interval_s == 600
        assert settings.retention_days == 14
        assert settings.retention_interval_s == 3600
        assert settings.site_utc_offset_minutes == 120
        assert settings.alert_low_light_expiry_hours == 12.0
        assert settings.health_path == env_vars_full["HEALTH_PATH"]
        assert settings.huawei_username == "api-user"
        assert settings.huawei_password == "huawei-system-code"
        assert settings.growatt_api_token == "growatt-token"
        assert settings.solis_api_id == "1300386381676"
        assert settings.solis_api_secret == "solis-secret"
        assert settings.vendor_max_retries == 5
        assert settings.vendor_timeout_s == 15.0

    def test_trailing_slash_stripped_from_vendor_url(self, env_vars_full: dict[str, str]) -> None:
        settings = CollectorSettings()
        assert settings.huawei_api_url == "https://eu5.fusionsolar.huawei.com"

    def test_defaults_applied_when_optional_vars_missing(
        self, env_vars_required_only: dict[str, str]
    ) -> None:
        settings = CollectorSettings()

        assert settings.poll_interval_s == 300
        assert settings.retention_days == 30
        assert settings.retention_interval_s == 86400
        assert settings.site_utc_offset_minutes == 0
        assert settings.alert_low_light_expiry_hours is None
        assert settings.health_path == "/data/health.json"
        assert settings.huawei_api_url == "https://intl.fusionsolar.huawei.com"
        assert settings.growatt_api_url == "https://openapi.growatt.com"
        assert settings.solis_api_url == "https://www.soliscloud.com:13333"
        assert settings.vendor_max_retries == 3
        assert settings.vendor_timeout_s == 30.0


class TestCollectorSettingsRequiredVars:
    """Config validation rejects missing required variables."""

    def test_missing_database_url_raises(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            CollectorSettings()
        assert "database_url" in str(exc_info.value).lower()


class TestCollectorSettingsValidation:
    """Field validators reject out-of-range values."""

    @pytest.mark.parametrize(
        "var",
        ["HUAWEI_API_URL", "GROWATT_API_URL", "SOLIS_API_URL"],
    )
    def test_vendor_url_must_be_https(
        self,
        env_vars_required_only: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
        var: str,
    ) -> None:
        monkeypatch.setenv(var, "http://insecure.example.com")
        with pytest.raises(ValidationError, match="HTTPS"):
            CollectorSettings()

    @pytest.mark.parametrize(
        ("var", "value"),
        [
            ("POLL_INTERVAL_S", "59"),
            ("RETENTION_DAYS", "0"),
            ("RETENTION_INTERVAL_S", "0"),
            ("SITE_UTC_OFFSET_MINUTES", "-721"),
            ("SITE_UTC_OFFSET_MINUTES", "841"),
            ("ALERT_LOW_LIGHT_EXPIRY_HOURS", "0"),
            ("VENDOR_MAX_RETRIES", "0"),
            ("VENDOR_MAX_RETRIES", "11"),
            ("VENDOR_TIMEOUT_S", "0"),
        ],
    )
    def test_out_of_range_rejected(
        self,
        env_vars_required_only: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
        var: str,
        value: str,
    ) -> None:
        monkeypatch.setenv(var, value)
        with pytest.raises(ValidationError):
            CollectorSettings()

    def test_boundary_values_accepted(
        self,
        env_vars_required_only: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("POLL_INTERVAL_S", "60")
        monkeypatch.setenv("SITE_UTC_OFFSET_MINUTES", "840")
        monkeypatch.setenv("VENDOR_MAX_RETRIES", "10")
        settings = CollectorSettings()
        assert settings.poll_interval_s == 60
        assert settings.site_utc_offset_minutes == 840
        assert settings.vendor_max_retries == 10


class TestEnabledProviders:
    """Providers are enabled by their credentials."""

    def test_all_providers_enabled(self, env_vars_full: dict[str, str]) -> None:
        assert CollectorSettings().enabled_providers() == [
            Provider.HUAWEI,
            Provider.GROWATT,
            Provider.SOLIS,
        ]

    def test_none_enabled_without_credentials(self, env_vars_required_only: dict[str, str]) -> None:
        assert CollectorSettings().enabled_providers() == []

    def test_partial_credentials_do_not_enable(
        self,
        env_vars_required_only: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("HUAWEI_USERNAME", "api-user")
        monkeypatch.setenv("SOLIS_API_SECRET", "secret")
        monkeypatch.setenv("GROWATT_API_TOKEN", "token")
        assert CollectorSettings().enabled_providers() == [Provider.GROWATT]
