"""Async database base configuration and session management."""

from __future__ import annotations

import os

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from hearth_migration.config import get_config
from hearth_migration.database.base import build_database_url

_async_engine: AsyncEngine | None = None
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _async_engine

    if _async_engine is None:
        postgres_cfg = get_config().postgres

        # Configurable pool settings
        pool_size = int(os.getenv("ASYNC_POOL_SIZE", "20"))
        max_overflow = int(os.getenv("ASYNC_MAX_OVERFLOW", "10"))

        _async_engine = create_async_engine(
            build_database_url(postgres_cfg),
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            echo=postgres_cfg.echo,
        )

    return _async_engine


def get_async_session_local() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _AsyncSessionLocal

    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )

    return _AsyncSessionLocal

