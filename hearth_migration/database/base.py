"""
Database base configuration.

Provides the SQLAlchemy declarative base and the connection URL builder
shared by the async engine and Alembic.
"""

from __future__ import annotations

from sqlalchemy.orm import declarative_base

from hearth_migration.config import PostgresConfig, get_config

# SQLAlchemy declarative base for models
Base = declarative_base()


def build_database_url(postgres_cfg: PostgresConfig | None = None, *, async_driver: bool = True) -> str:
    """
    Build the Postgres connection string.

    Args:
        postgres_cfg: Postgres config section (defaults to the global config)
        async_driver: Use the asyncpg driver

    Returns:
        SQLAlchemy connection URL
    """
    cfg = postgres_cfg or get_config().postgres
    scheme = "postgresql+asyncpg" if async_driver else "postgresql"

    # Use full URL if provided, otherwise construct from components
    if cfg.url:
        if async_driver and cfg.url.startswith("postgresql://"):
            return cfg.url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return cfg.url

    return f"{scheme}://{cfg.user}:{cfg.password}@{cfg.host}:{cfg.port}/{cfg.db}"
