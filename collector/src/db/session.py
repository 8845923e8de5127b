"""
Async database engines and session factories.

The collector daemon and the operator API each own one engine:

- the daemon builds it from ``CollectorSettings.database_url`` and hands the
  session factory to the orchestrator and the retention loop;
- the API builds it in its lifespan and keeps the factory on ``app.state``,
  where :func:`get_async_session` picks it up per request.

PostgreSQL (asyncpg) connections are pre-pinged before use. SQLite
(aiosqlite) connections wait up to ``SQLITE_BUSY_TIMEOUT_S`` on a locked
database file.

CHANGELOG:
- 2026-03-04: App-scoped session factory for the operator API (STORY-031)
- 2026-02-27: Per-dialect engine options; daemon builds its own engine (STORY-021)
- 2026-02-14: Initial creation (STORY-007)
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

SQLITE_BUSY_TIMEOUT_S: float = 30.0


def create_engine(url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for *url*.

    Args:
        url: SQLAlchemy async URL (``postgresql+asyncpg://`` or
            ``sqlite+aiosqlite://``).

    Returns:
        AsyncEngine: Engine with the connection options of its dialect.
    """
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(
            url, echo=False, connect_args={"timeout": SQLITE_BUSY_TIMEOUT_S}
        )
    return create_async_engine(url, echo=False, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory whose objects stay usable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session from the API's session factory for one request.

    Yields:
        AsyncSession: Closed automatically after the request completes.
    """
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_factory() as session:
        yield session
