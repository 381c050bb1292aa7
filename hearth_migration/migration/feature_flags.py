"""
Runtime feature flags controlling dual-write routing.

Flags live in a single config-store row keyed by a fixed string. The
manager keeps a short-lived in-process copy so every repository call can
consult the flags without a round trip, while an operator's flip still
propagates within a few seconds.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hearth_migration.config import env_fallback_flags, get_config
from hearth_migration.database.async_session import async_db_session
from hearth_migration.database.models import SystemConfig
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.errors import FeatureFlagPersistenceError

logger = get_logger(__name__)


class FeatureFlags(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    enable_dual_write: bool = Field(default=False, alias="enableDualWrite")
    enable_supabase_primary: bool = Field(default=False, alias="enableSupabasePrimary")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    def to_store_value(self) -> Dict[str, bool]:
        """JSON value as stored in the config row."""
        return {
            "enableDualWrite": self.enable_dual_write,
            "enableSupabasePrimary": self.enable_supabase_primary,
        }


class FeatureFlagStore(ABC):
    """Key/value backend holding the flag row."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return {"value": dict, "updated_at": datetime | None} or None if missing."""

    @abstractmethod
    async def upsert(self, key: str, value: Dict[str, Any], updated_at: datetime) -> None:
        """Insert or replace the row for `key`."""


class InMemoryFeatureFlagStore(FeatureFlagStore):
    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self.rows: Dict[str, Dict[str, Any]] = dict(initial or {})
        self.get_calls = 0
        self.upsert_calls = 0

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        self.get_calls += 1
        row = self.rows.get(key)
        return dict(row) if row is not None else None

    async def upsert(self, key: str, value: Dict[str, Any], updated_at: datetime) -> None:
        self.upsert_calls += 1
        self.rows[key] = {"value": dict(value), "updated_at": updated_at}


class SqlFeatureFlagStore(FeatureFlagStore):
    """Config store backed by the `system_configs` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._session_factory() as session:
            row = (
                await session.execute(select(SystemConfig).where(SystemConfig.key == key))
            ).scalar_one_or_none()
            if row is None:
                return None
            return {"value": row.value, "updated_at": row.updated_at}

    async def upsert(self, key: str, value: Dict[str, Any], updated_at: datetime) -> None:
        async with async_db_session(self._session_factory) as session:
            # merge() is INSERT or UPDATE keyed on the primary key
            await session.merge(SystemConfig(key=key, value=value, updated_at=updated_at))


class FeatureFlagManager:
    """
    Reads and writes the dual-write flags with a TTL cache.

    Concurrent `get_flags()` calls during a cache miss share one in-flight
    fetch. `update_flags()` invalidates the cache so the operator's change
    is visible on the very next read.
    """

    def __init__(
        self,
        store: FeatureFlagStore,
        *,
        config_key: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        cfg = get_config().dual_write
        self._store = store
        self.config_key = config_key or cfg.flags_config_key
        self.ttl_seconds = cfg.flag_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock

        self._cached: Optional[FeatureFlags] = None
        self._cached_at = 0.0
        self._inflight: Optional[asyncio.Task] = None
        # Bumped on invalidation so a fetch started earlier cannot repopulate the cache
        self._generation = 0

    def _cache_valid(self) -> bool:
        return self._cached is not None and (self._clock() - self._cached_at) < self.ttl_seconds

    async def get_flags(self) -> FeatureFlags:
        """Current flags; never raises."""
        if self._cache_valid():
            return self._cached  # type: ignore[return-value]

        task = self._inflight
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refresh(self._generation))
            self._inflight = task
            task.add_done_callback(self._clear_inflight)

        # shield: a cancelled waiter must not cancel the fetch other callers share
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self, generation: int) -> FeatureFlags:
        flags = await self._fetch()
        if generation == self._generation:
            self._cached = flags
            self._cached_at = self._clock()
        return flags

    async def _fetch(self) -> FeatureFlags:
        try:
            row = await self._store.get(self.config_key)
        except Exception as e:  # noqa: BLE001
            logger.error("[MIGRATION][FLAGS] Failed to read feature flags: %r", e)
            return self._fallback_flags()

        if row is None:
            logger.warning(
                "[MIGRATION][FLAGS] No flag record for %r; using environment defaults",
                self.config_key,
            )
            flags = self._fallback_flags()
            await self._create_default_record(flags)
            return flags

        try:
            value = row.get("value") or {}
            return FeatureFlags.model_validate({**value, "updated_at": row.get("updated_at")})
        except Exception as e:  # noqa: BLE001
            logger.error("[MIGRATION][FLAGS] Malformed flag record %r: %r", self.config_key, e)
            return self._fallback_flags()

    async def _create_default_record(self, flags: FeatureFlags) -> None:
        try:
            await self._store.upsert(
                self.config_key, flags.to_store_value(), datetime.now(timezone.utc)
            )
            logger.info("[MIGRATION][FLAGS] Created default flag record %r", self.config_key)
        except Exception as e:  # noqa: BLE001
            logger.warning("[MIGRATION][FLAGS] Could not create default flag record: %r", e)

    @staticmethod
    def _fallback_flags() -> FeatureFlags:
        enable_dual_write, enable_supabase_primary = env_fallback_flags()
        return FeatureFlags(
            enable_dual_write=enable_dual_write,
            enable_supabase_primary=enable_supabase_primary,
        )

    async def update_flags(
        self,
        flags: Optional[FeatureFlags] = None,
        *,
        enable_dual_write: Optional[bool] = None,
        enable_supabase_primary: Optional[bool] = None,
    ) -> FeatureFlags:
        """
        Persist new flag values and invalidate the cache.

        Either pass a full FeatureFlags, or individual keyword values; flags
        left unspecified keep their current value.

        Raises:
            FeatureFlagPersistenceError: If the config store write fails
        """
        current = flags if flags is not None else await self.get_flags()
        now = datetime.now(timezone.utc)
        flags = FeatureFlags(
            enable_dual_write=current.enable_dual_write if enable_dual_write is None else enable_dual_write,
            enable_supabase_primary=(
                current.enable_supabase_primary
                if enable_supabase_primary is None
                else enable_supabase_primary
            ),
            updated_at=now,
        )

        try:
            await self._store.upsert(self.config_key, flags.to_store_value(), now)
        except Exception as e:
            logger.error("[MIGRATION][FLAGS] Failed to update feature flags: %r", e)
            raise FeatureFlagPersistenceError(f"Failed to update feature flags: {e}") from e

        self.clear_cache()
        logger.info(
            "[MIGRATION][FLAGS] Updated flags: dual_write=%s supabase_primary=%s",
            flags.enable_dual_write,
            flags.enable_supabase_primary,
        )
        return flags

    def clear_cache(self) -> None:
        self._cached = None
        self._cached_at = 0.0
        self._generation += 1
        self._inflight = None


__all__ = [
    "FeatureFlags",
    "FeatureFlagStore",
    "InMemoryFeatureFlagStore",
    "SqlFeatureFlagStore",
    "FeatureFlagManager",
]
