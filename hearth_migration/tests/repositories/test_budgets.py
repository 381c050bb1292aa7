"""Tests for the budget repositories."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from hearth_migration.repositories.base import SpendingRecorder
from hearth_migration.repositories.budgets import (
    RECORD_SPENDING_RPC,
    SqlBudgetRepository,
    SupabaseBudgetRepository,
)
from hearth_migration.repositories.rest_table_repository import RestTableError

PAYLOAD = {
    "budget_id": "bud-1",
    "amount": 42.5,
    "category": "groceries",
    "description": "weekly shop",
    "purchase_date": "2026-10-18T10:00:00+00:00",
    "items": [{"name": "milk", "price": 2.5}],
}


def supabase_repo(response: httpx.Response, requests: list) -> SupabaseBudgetRepository:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return response

    client = httpx.AsyncClient(base_url="https://proj.supabase.co/rest/v1", transport=httpx.MockTransport(handler))
    return SupabaseBudgetRepository(client)


@pytest.mark.asyncio
async def test_record_spending_calls_stored_procedure():
    requests = []
    response = httpx.Response(
        200,
        json={
            "success": True,
            "data": {
                "spending": {"id": "sp-1", "amount": 42.5, "items": None},
                "budget": {"id": "bud-1", "used_amount": 142.5},
            },
        },
    )
    repo = supabase_repo(response, requests)

    spending = await repo.record_spending(PAYLOAD)

    assert requests[0].url.path == f"/rest/v1/rpc/{RECORD_SPENDING_RPC}"
    body = json.loads(requests[0].content)
    assert body["p_budget_id"] == "bud-1"
    assert body["p_amount"] == 42.5
    assert body["p_category"] == "groceries"
    assert body["p_transaction_id"] is None
    assert spending["id"] == "sp-1"
    assert spending["budget_id"] == "bud-1"
    assert spending["items"] == PAYLOAD["items"]


@pytest.mark.asyncio
async def test_record_spending_defaults_purchase_date():
    requests = []
    response = httpx.Response(
        200,
        json={"success": True, "data": {"spending": {"id": "sp"}, "budget": {"id": "bud-1"}}},
    )
    payload = {k: v for k, v in PAYLOAD.items() if k != "purchase_date"}

    await supabase_repo(response, requests).record_spending(payload)

    assert json.loads(requests[0].content)["p_purchase_date"]


@pytest.mark.asyncio
async def test_record_spending_reports_procedure_error():
    response = httpx.Response(200, json={"success": False, "error": "Budget exhausted"})

    with pytest.raises(RestTableError, match="Budget exhausted"):
        await supabase_repo(response, []).record_spending(PAYLOAD)


@pytest.mark.asyncio
async def test_record_spending_rejects_incomplete_data():
    response = httpx.Response(200, json={"success": True, "data": {"spending": {"id": "sp"}}})

    with pytest.raises(RestTableError, match="incomplete"):
        await supabase_repo(response, []).record_spending(PAYLOAD)


@pytest.mark.asyncio
async def test_record_spending_rejects_other_budget():
    response = httpx.Response(
        200,
        json={"success": True, "data": {"spending": {"id": "sp"}, "budget": {"id": "bud-2"}}},
    )

    with pytest.raises(RestTableError, match="bud-2"):
        await supabase_repo(response, []).record_spending(PAYLOAD)


@pytest.mark.asyncio
async def test_list_spendings_queries_spendings_table():
    requests = []
    repo = supabase_repo(httpx.Response(200, json=[{"id": "sp-1"}]), requests)

    rows = await repo.list_spendings("bud-1", limit=5)

    params = requests[0].url.params
    assert rows == [{"id": "sp-1"}]
    assert requests[0].url.path == "/rest/v1/spendings"
    assert params["budget_id"] == "eq.bud-1"
    assert params["order"] == "purchase_date.desc"
    assert params["limit"] == "5"
    assert params["deleted_at"] == "is.null"


def test_only_supabase_store_records_spendings():
    assert issubclass(SupabaseBudgetRepository, SpendingRecorder)
    assert not issubclass(SqlBudgetRepository, SpendingRecorder)
    assert not hasattr(SqlBudgetRepository(MagicMock()), "record_spending")


def test_legacy_repository_targets_budget_table():
    repo = SqlBudgetRepository(MagicMock())

    assert repo.soft_delete_field == "deleted_at"
    assert repo._columns_only({"status": "active", "unknown": 1}) == {"status": "active"}
