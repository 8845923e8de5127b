"""
Collector daemon main loop for string-level solar telemetry.

Runs two concurrent asyncio loops:
1. **Poll loop**: every POLL_INTERVAL_S, starts one orchestrator cycle per
   enabled provider as an independent task. A provider whose previous cycle
   is still running is skipped for that tick, never queued.
2. **Retention loop**: every RETENTION_INTERVAL_S, deletes raw readings older
   than RETENTION_DAYS. Rollups and alerts are kept.

Both loops are resilient: an exception in one iteration is logged and does
not crash the loop or affect the other loop. Graceful shutdown on
SIGTERM/SIGINT sets a shared asyncio.Event; in-flight cycles are awaited,
vendor sessions are closed and the engine is disposed before exiting.

Structured JSON logging is used for all events. A HealthWriter records each
cycle report and each retention run in a JSON health file.

The database schema is managed by Alembic (``alembic upgrade head``).

CHANGELOG:
- 2026-03-01: Retention loop (STORY-030)
- 2026-02-28: Poll loop drives PollOrchestrator per provider (STORY-029)
- 2026-02-14: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from collector.src.health import HealthWriter
from collector.src.services.retention import purge_old_readings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from collector.src.orchestrator import CycleReport, PollOrchestrator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the collector daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # httpx logs every request at INFO, which drowns the cycle summaries.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup, masking every vendor secret.

    Args:
        settings: A CollectorSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Collector starting with config: "
        "providers=%s, poll_interval_s=%s, retention_days=%s, "
        "retention_interval_s=%s, site_utc_offset_minutes=%s, "
        "alert_low_light_expiry_hours=%s, health_path=%s, "
        "vendor_max_retries=%s, vendor_timeout_s=%s, "
        "huawei_api_url=%s, huawei_password_masked=%s, "
        "growatt_api_url=%s, growatt_token_masked=%s, "
        "solis_api_url=%s, solis_secret_masked=%s",
        [p.value for p in settings.enabled_providers()],  # type: ignore[union-attr]
        settings.poll_interval_s,  # type: ignore[union-attr]
        settings.retention_days,  # type: ignore[union-attr]
        settings.retention_interval_s,  # type: ignore[union-attr]
        settings.site_utc_offset_minutes,  # type: ignore[union-attr]
        settings.alert_low_light_expiry_hours,  # type: ignore[union-attr]
        settings.health_path,  # type: ignore[union-attr]
        settings.vendor_max_retries,  # type: ignore[union-attr]
        settings.vendor_timeout_s,  # type: ignore[union-attr]
        settings.huawei_api_url,  # type: ignore[union-attr]
        _masked_token(settings.huawei_password),  # type: ignore[union-attr]
        settings.growatt_api_url,  # type: ignore[union-attr]
        _masked_token(settings.growatt_api_token),  # type: ignore[union-attr]
        settings.solis_api_url,  # type: ignore[union-attr]
        _masked_token(settings.solis_api_secret),  # type: ignore[union-attr]
    )


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


def _start_cycles(
    orchestrator: PollOrchestrator,
    pending: set[asyncio.Task[CycleReport]],
) -> list[asyncio.Task[CycleReport]]:
    """Start one cycle task per provider and track it in *pending*.

    Providers still running their previous cycle report themselves as
    skipped without doing any work.
    """
    started = []
    for provider in orchestrator.providers:
        task = asyncio.create_task(
            orchestrator.run_cycle(provider),
            name=f"cycle-{provider.value}",
        )
        pending.add(task)
        task.add_done_callback(pending.discard)
        started.append(task)
    return started


async def _retention_once(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    retention_days: int,
    health: HealthWriter | None = None,
) -> int | None:
    """Execute a single retention run.

    Catches database errors so that the caller's loop is never broken.

    Returns:
        Number of readings deleted, or None if the run failed.
    """
    try:
        async with session_factory() as db:
            deleted = await purge_old_readings(
                db,
                now=datetime.now(tz=UTC),
                retention_days=retention_days,
            )
    except SQLAlchemyError:
        logger.error("Retention run error", exc_info=True)
        return None

    if health is not None:
        try:
            health.record_retention(deleted)
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)
    return deleted


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _poll_loop(
    *,
    orchestrator: PollOrchestrator,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
) -> None:
    """Start provider cycles every poll_interval_s until shutdown_event is set.

    Cycles run as background tasks so a slow provider never delays the
    timer; in-flight cycles are awaited before returning.
    """
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    pending: set[asyncio.Task[CycleReport]] = set()
    while not shutdown_event.is_set():
        _start_cycles(orchestrator, pending)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=poll_interval_s,
            )
    if pending:
        logger.info("Waiting for %d in-flight cycle(s) to finish", len(pending))
        await asyncio.gather(*pending)
    logger.info("Poll loop stopped")


async def _retention_loop(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    retention_days: int,
    retention_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Run the retention job every retention_interval_s until shutdown."""
    logger.info("Retention loop started (interval=%ss)", retention_interval_s)
    while not shutdown_event.is_set():
        await _retention_once(
            session_factory=session_factory,
            retention_days=retention_days,
            health=health,
        )
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=retention_interval_s,
            )
    logger.info("Retention loop stopped")


async def run_loops(
    *,
    orchestrator: PollOrchestrator,
    session_factory: async_sessionmaker[AsyncSession],
    poll_interval_s: float,
    retention_days: int,
    retention_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Run poll and retention loops concurrently until shutdown."""
    logger.info("Starting concurrent poll and retention loops")
    await asyncio.gather(
        _poll_loop(
            orchestrator=orchestrator,
            poll_interval_s=poll_interval_s,
            shutdown_event=shutdown_event,
        ),
        _retention_loop(
            session_factory=session_factory,
            retention_days=retention_days,
            retention_interval_s=retention_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        ),
    )
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run loops.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from collector.src.clients import build_clients
    from collector.src.config import CollectorSettings
    from collector.src.db.session import create_engine, create_session_factory
    from collector.src.orchestrator import PollOrchestrator

    settings = CollectorSettings()
    log_config_summary(settings)

    clients = build_clients(settings)
    if not clients:
        logger.warning("No vendor credentials configured; only retention will run")

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    engine = create_engine(settings.database_url)
    session_factory = create_session_factory(engine)
    health = HealthWriter(settings.health_path)

    low_light_expiry = None
    if settings.alert_low_light_expiry_hours is not None:
        low_light_expiry = timedelta(hours=settings.alert_low_light_expiry_hours)

    orchestrator = PollOrchestrator(
        clients=clients,
        session_factory=session_factory,
        site_utc_offset_minutes=settings.site_utc_offset_minutes,
        low_light_expiry=low_light_expiry,
        health=health,
    )

    try:
        await run_loops(
            orchestrator=orchestrator,
            session_factory=session_factory,
            poll_interval_s=settings.poll_interval_s,
            retention_days=settings.retention_days,
            retention_interval_s=settings.retention_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        )
    finally:
        for client in clients.values():
            await client.aclose()
        await engine.dispose()


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the collector daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
