"""Budget repositories for both stores."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hearth_migration.database.async_session import async_db_session
from hearth_migration.database.models import Budget, Spending
from hearth_migration.migration.diffing import to_jsonable
from hearth_migration.repositories.base import BudgetRepository, BudgetSpendingRepository
from hearth_migration.repositories.rest_table_repository import RestTableError, RestTableRepository
from hearth_migration.repositories.sqlalchemy_repository import SqlAlchemyRepository

RECORD_SPENDING_RPC = "record_spending_tx"


class SqlBudgetRepository(SqlAlchemyRepository, BudgetRepository):
    """Legacy budgets. Spending writes go through the Supabase procedure only."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        super().__init__(session_factory, Budget, soft_delete_field="deleted_at")

    async def list_spendings(self, budget_id: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        async with async_db_session(self._session_factory) as session:
            stmt = (
                select(Spending)
                .where(Spending.budget_id == self._coerce_id(budget_id))
                .where(Spending.deleted_at.is_(None))
                .order_by(Spending.purchase_date.desc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = (await session.execute(stmt)).scalars().all()
            return [to_jsonable(r) for r in rows]


class SupabaseBudgetRepository(RestTableRepository, BudgetSpendingRepository):
    def __init__(self, client: httpx.AsyncClient):
        super().__init__(client, "budgets", soft_delete_field="deleted_at")

    async def record_spending(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        purchase_date = payload.get("purchase_date") or datetime.now(timezone.utc)
        params = {
            "p_budget_id": payload["budget_id"],
            "p_amount": payload["amount"],
            "p_category": payload["category"],
            "p_description": payload.get("description"),
            "p_purchase_date": purchase_date,
            "p_transaction_id": payload.get("transaction_id"),
            "p_platform": payload.get("platform"),
            "p_items": payload.get("items"),
        }
        data = await self.rpc(RECORD_SPENDING_RPC, params)

        if not isinstance(data, dict) or not data.get("success"):
            message = None
            if isinstance(data, dict):
                message = data.get("error") or data.get("message")
            raise RestTableError(message or f"{RECORD_SPENDING_RPC} failed", details=data)

        body = data.get("data") or {}
        spending = body.get("spending")
        budget = body.get("budget") or {}
        if not spending or not budget.get("id"):
            raise RestTableError(f"{RECORD_SPENDING_RPC} returned incomplete data", details=data)
        if str(budget["id"]) != str(payload["budget_id"]):
            raise RestTableError(
                f"{RECORD_SPENDING_RPC} returned budget {budget['id']} for request {payload['budget_id']}",
                details=data,
            )

        result = dict(spending)
        result["budget_id"] = budget["id"]
        if result.get("items") is None:
            result["items"] = payload.get("items")
        return result

    async def list_spendings(self, budget_id: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {
            "budget_id": f"eq.{budget_id}",
            "select": "*",
            "order": "purchase_date.desc",
            "deleted_at": "is.null",
        }
        if limit is not None:
            params["limit"] = str(limit)
        return await self._request("GET", "/spendings", params=params) or []


class SqlSpendingRepository(SqlAlchemyRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        super().__init__(session_factory, Spending, soft_delete_field="deleted_at")


class SupabaseSpendingRepository(RestTableRepository):
    def __init__(self, client: httpx.AsyncClient):
        super().__init__(client, "spendings", soft_delete_field="deleted_at")
