"""Wiring of the dual-write stack from application config."""

from __future__ import annotations

from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hearth_migration.config import get_config
from hearth_migration.database.async_base import get_async_session_local
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.dual_write import DualWriteDecorator
from hearth_migration.migration.feature_flags import FeatureFlagManager, SqlFeatureFlagStore
from hearth_migration.migration.result_verifier import ResultVerifier, SqlDiffStore
from hearth_migration.repositories.base import BudgetSpendingRepository
from hearth_migration.repositories.budgets import SqlBudgetRepository, SupabaseBudgetRepository
from hearth_migration.repositories.rest_table_repository import build_supabase_client

logger = get_logger(__name__)

_flag_manager: Optional[FeatureFlagManager] = None
_verifier: Optional[ResultVerifier] = None


def legacy_store_configured() -> bool:
    postgres_cfg = get_config().postgres
    return bool(postgres_cfg.url or postgres_cfg.password)


def get_flag_manager(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FeatureFlagManager:
    """Process-wide flag manager backed by `system_configs`."""
    global _flag_manager
    if _flag_manager is None:
        _flag_manager = FeatureFlagManager(
            SqlFeatureFlagStore(session_factory or get_async_session_local())
        )
    return _flag_manager


def get_verifier(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> ResultVerifier:
    """Process-wide verifier writing to `dual_write_diffs`."""
    global _verifier
    if _verifier is None:
        _verifier = ResultVerifier(SqlDiffStore(session_factory or get_async_session_local()))
    return _verifier


def build_budget_repository(
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    supabase_client: Optional[httpx.AsyncClient] = None,
    api_endpoint: str = "/api/budget",
) -> BudgetSpendingRepository:
    """Budget repository with dual-write routing, typed as the plain interface."""
    factory = session_factory or get_async_session_local()
    legacy = SqlBudgetRepository(factory) if legacy_store_configured() else None
    if legacy is None:
        logger.warning("[MIGRATION][DUAL-WRITE] Legacy store not configured; budgets use Supabase only")

    decorator = DualWriteDecorator(
        BudgetSpendingRepository,
        legacy,
        SupabaseBudgetRepository(supabase_client or build_supabase_client()),
        flag_manager=get_flag_manager(factory),
        verifier=get_verifier(factory),
        api_endpoint=api_endpoint,
    )
    return decorator.as_repository()


async def shutdown() -> None:
    """Flush pending verification work; call on application shutdown."""
    if _verifier is not None:
        await _verifier.runner.shutdown()
