"""
FastAPI dependency injection providers.

Provides database sessions and the authenticated operator for use with
FastAPI's Depends() mechanism.

CHANGELOG:
- 2026-03-04: Add CurrentOperator dependency (STORY-031)
- 2026-02-14: Initial creation (STORY-007)
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from collector.src.db.session import get_async_session

# Type alias for injecting an async DB session via FastAPI Depends().
DbSession = Annotated[AsyncSession, Depends(get_async_session)]


async def get_operator(request: Request) -> str:
    """Return the operator authenticated by BearerAuth on app.state.

    Args:
        request: The incoming FastAPI request.

    Returns:
        str: The operator name bound to the bearer token.
    """
    return await request.app.state.auth.verify(request)


CurrentOperator = Annotated[str, Depends(get_operator)]
