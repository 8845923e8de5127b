"""
FastAPI application entry point for the operator API.

Serves the health endpoint and the alert-resolve mutation. DATABASE_URL and
OPERATOR_TOKENS are validated at startup; OPERATOR_TOKENS is parsed into a
BearerAuth instance stored on app.state for route handlers. The lifespan
owns the database engine and keeps its session factory on app.state.

Run with ``uvicorn collector.src.api.main:app``.

CHANGELOG:
- 2026-03-05: Lifespan owns the database engine
- 2026-03-04: Register alerts router, OPERATOR_TOKENS auth (STORY-031)
- 2026-02-14: Register health router (STORY-015)
- 2026-02-14: Initial creation (STORY-007)
"""

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from collector.src.api.alerts import router as alerts_router
from collector.src.api.health import router as health_router
from collector.src.auth.bearer import BearerAuth
from collector.src.db.session import create_engine, create_session_factory

logger = logging.getLogger(__name__)


def _load_env_config() -> dict[str, str]:
    """Load and validate required environment variables at startup.

    Returns:
        dict: Mapping of config key to value.

    Raises:
        RuntimeError: If a required environment variable is missing.
    """
    required = ["DATABASE_URL", "OPERATOR_TOKENS"]
    config: dict[str, str] = {}
    missing: list[str] = []

    for key in required:
        value = os.environ.get(key)
        if not value:
            missing.append(key)
        else:
            config[key] = value

    if missing:
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    return config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup validation and shutdown logging."""
    config = _load_env_config()
    app.state.config = config

    app.state.auth = BearerAuth.from_env_value(config["OPERATOR_TOKENS"])

    engine = create_engine(config["DATABASE_URL"])
    app.state.session_factory = create_session_factory(engine)
    logger.info("Environment validated, operator API ready")
    try:
        yield
    finally:
        logger.info("Operator API shutting down")
        await engine.dispose()


app = FastAPI(
    title="String Monitor Operator API",
    description="Operator endpoints for string-level solar alerts.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(alerts_router)
