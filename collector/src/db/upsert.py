"""
Dialect helpers shared by the persistence services.

PostgreSQL (asyncpg) and SQLite (aiosqlite) both support
``INSERT ... ON CONFLICT DO UPDATE`` but expose it through
dialect-specific ``insert`` constructs; :func:`dialect_insert` picks the
right one for the session's bind.

CHANGELOG:
- 2026-02-28: Initial creation (STORY-026)

TODO:
- None
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(db: AsyncSession, model: Any) -> Any:
    """Return an ``insert(model)`` supporting ``on_conflict_do_*`` for *db*.

    Raises:
        NotImplementedError: For dialects without ON CONFLICT support.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)
