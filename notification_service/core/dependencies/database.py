"""Database dependencies for FastAPI route handlers.

Two session getters exist:

1. `get_db_session()` (this module) - FastAPI dependency, one session per request.
2. `get_async_session()` (infra.database) - context manager for the CLI and
   the scheduled reminder sweep.

Both use the same session factory.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from notification_service.infra.database import get_async_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency for database session.

    Route handlers commit explicitly; uncommitted work is discarded when the
    session closes.
    """
    async with get_async_session() as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

__all__ = ["SessionDep", "get_db_session"]
