"""Repository interfaces shared by both backing stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional


class BaseRepository(ABC):
    """CRUD contract every store adapter implements for one entity.

    Records cross this boundary as plain dicts so results from different
    stores can be compared field by field.
    """

    @abstractmethod
    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it, including its generated id."""

    @abstractmethod
    async def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        """Return one record or None."""

    @abstractmethod
    async def list(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return records matching equality filters, ordered by id."""

    @abstractmethod
    async def update(self, record_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply a partial update and return the updated record."""

    @abstractmethod
    async def delete(self, record_id: Any) -> None:
        """Remove a record."""


class BudgetRepository(BaseRepository):
    """Budgets plus read access to their spending records."""

    @abstractmethod
    async def list_spendings(self, budget_id: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Spendings for one budget, newest first."""


class SpendingRecorder(ABC):
    """Writes that only the Supabase store implements, as stored procedures."""

    @abstractmethod
    async def record_spending(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Record a spending against a budget and update its usage atomically."""


class BudgetSpendingRepository(BudgetRepository, SpendingRecorder):
    """What callers of the budget API see: budgets plus spending writes."""
