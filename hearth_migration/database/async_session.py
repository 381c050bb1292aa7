"""Async database session context manager."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hearth_migration.database.async_base import get_async_session_local


@asynccontextmanager
async def async_db_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Async context manager for database sessions with automatic cleanup.

    Commits when the block exits normally and rolls back on any exception.
    Uses the process-wide session factory unless one is passed in.
    """
    SessionLocal = session_factory or get_async_session_local()
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
