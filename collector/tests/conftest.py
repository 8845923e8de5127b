"""
Shared test fixtures for collector tests.

All collector env vars are cleaned before each test and the working
directory is moved to tmp_path so no .env file is picked up by Pydantic
BaseSettings. Persistence-level tests get a throwaway SQLite database
(aiosqlite) with the full schema created from the ORM metadata.

CHANGELOG:
- 2026-02-28: Add sqlite engine/session_factory fixtures (STORY-026)
- 2026-02-27: Initial creation (STORY-020)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from collector.src.db.models import Base

# All CollectorSettings / API environment variable names, used for cleanup.
_ALL_COLLECTOR_ENV_VARS = (
    "DATABASE_URL",
    "POLL_INTERVAL_S",
    "RETENTION_DAYS",
    "RETENTION_INTERVAL_S",
    "SITE_UTC_OFFSET_MINUTES",
    "ALERT_LOW_LIGHT_EXPIRY_HOURS",
    "HEALTH_PATH",
    "HUAWEI_API_URL",
    "HUAWEI_USERNAME",
    "HUAWEI_PASSWORD",
    "GROWATT_API_URL",
    "GROWATT_API_TOKEN",
    "SOLIS_API_URL",
    "SOLIS_API_ID",
    "SOLIS_API_SECRET",
    "VENDOR_MAX_RETRIES",
    "VENDOR_TIMEOUT_S",
    "OPERATOR_TOKENS",
)


@pytest.fixture(autouse=True)
def _clean_collector_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all collector env vars and isolate from .env files before each test."""
    for var in _ALL_COLLECTOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every CollectorSettings variable, with credentials for all vendors."""
    env = {
        "DATABASE_URL": "sqlite+aiosqlite:///./collector.db",
        "POLL_INTERVAL_S": "600",
        "RETENTION_DAYS": "14",
        "RETENTION_INTERVAL_S": "3600",
        "SITE_UTC_OFFSET_MINUTES": "120",
        "ALERT_LOW_LIGHT_EXPIRY_HOURS": "12",
        "HEALTH_PATH": "/tmp/collector-health.json",
        "HUAWEI_API_URL": "https://eu5.fusionsolar.huawei.com/",
        "HUAWEI_USERNAME": "api-user",
        "HUAWEI_PASSWORD": "huawei-system-code",
        "GROWATT_API_URL": "https://openapi.growatt.com",
        "GROWATT_API_TOKEN": "growatt-token",
        "SOLIS_API_URL": "https://www.soliscloud.com:13333",
        "SOLIS_API_ID": "1300386381676",
        "SOLIS_API_SECRET": "solis-secret",
        "VENDOR_MAX_RETRIES": "5",
        "VENDOR_TIMEOUT_S": "15",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only DATABASE_URL; every vendor stays disabled."""
    env = {"DATABASE_URL": "postgresql+asyncpg://u:p@localhost/solar"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite engine on a per-test database file with the schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the per-test SQLite engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A single async session on the per-test database."""
    async with session_factory() as session:
        yield session
