"""
Migration utilities for the Prisma-to-Supabase transition.

Provides dual-write routing between the legacy store and Supabase, the
feature flags that control it, result verification, and reconciliation
tooling for divergence the dual-write path cannot repair on its own.
"""

from hearth_migration.migration.dual_write import (
    DualWriteDecorator,
    ExecutionMode,
    create_dual_write_decorator,
)
from hearth_migration.migration.errors import (
    DualWriteConfigurationError,
    DualWriteError,
    FeatureFlagPersistenceError,
    RepositoryMethodNotFoundError,
)
from hearth_migration.migration.feature_flags import (
    FeatureFlagManager,
    FeatureFlags,
    FeatureFlagStore,
    InMemoryFeatureFlagStore,
    SqlFeatureFlagStore,
)
from hearth_migration.migration.result_verifier import (
    AlertEvent,
    DiffRecord,
    InMemoryDiffStore,
    ResultVerifier,
    Severity,
    SqlDiffStore,
)

__all__ = [
    "AlertEvent",
    "DiffRecord",
    "DualWriteConfigurationError",
    "DualWriteDecorator",
    "DualWriteError",
    "ExecutionMode",
    "FeatureFlagManager",
    "FeatureFlagPersistenceError",
    "FeatureFlagStore",
    "FeatureFlags",
    "InMemoryDiffStore",
    "InMemoryFeatureFlagStore",
    "RepositoryMethodNotFoundError",
    "ResultVerifier",
    "Severity",
    "SqlDiffStore",
    "SqlFeatureFlagStore",
    "create_dual_write_decorator",
]
