"""Database session management with the SQLAlchemy async engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from notification_service.core.database import Base
from notification_service.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

db_settings = get_db_settings()

# PostgreSQL via psycopg when configured, otherwise the local SQLite file
engine = create_async_engine(
    db_settings.get_sqlalchemy_url(),
    **db_settings.sqlalchemy_engine_kwargs(),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Example:
        async with get_async_session() as session:
            swept = await sweep.run_sweep(session)
            await session.commit()
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database() -> None:
    """Verify connectivity and create missing tables when requested.

    Tables are always created for the SQLite fallback so a bare local run
    works without migrations.
    """
    # Register the ORM models on Base.metadata
    from notification_service.features.notifications import models  # noqa: F401

    create_tables = db_settings.create_tables_on_startup or not db_settings.is_configured

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(
            "Failed to connect to database",
            extra={"error": str(e), "postgres": db_settings.is_configured},
        )
        raise

    logger.info(
        "Database connection established",
        extra={"postgres": db_settings.is_configured, "tables_created": create_tables},
    )


async def close_database() -> None:
    """Dispose the engine during application shutdown."""
    logger.info("Closing database connection")
    await engine.dispose()


__all__ = [
    "AsyncSessionLocal",
    "close_database",
    "engine",
    "get_async_session",
    "init_database",
]
