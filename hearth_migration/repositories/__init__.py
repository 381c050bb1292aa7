"""
Repository interfaces and store adapters.

`SqlAlchemyRepository` is the legacy relational store (store A),
`RestTableRepository` talks to Supabase's REST interface (store B).
"""

from hearth_migration.repositories.base import (
    BaseRepository,
    BudgetRepository,
    BudgetSpendingRepository,
    SpendingRecorder,
)
from hearth_migration.repositories.budgets import (
    SqlBudgetRepository,
    SqlSpendingRepository,
    SupabaseBudgetRepository,
    SupabaseSpendingRepository,
)
from hearth_migration.repositories.rest_table_repository import (
    RestTableError,
    RestTableRepository,
    build_supabase_client,
)
from hearth_migration.repositories.sqlalchemy_repository import SqlAlchemyRepository

__all__ = [
    "BaseRepository",
    "BudgetRepository",
    "BudgetSpendingRepository",
    "RestTableError",
    "RestTableRepository",
    "SpendingRecorder",
    "SqlAlchemyRepository",
    "SqlBudgetRepository",
    "SqlSpendingRepository",
    "SupabaseBudgetRepository",
    "SupabaseSpendingRepository",
    "build_supabase_client",
]
