"""
Pytest configuration and fixtures for the dual-write tests.

Provides in-memory stores, a controllable clock and fake repositories that
record every call and can be told to fail or to block on an event.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest

from hearth_migration.migration.feature_flags import (
    FeatureFlagManager,
    FeatureFlags,
    InMemoryFeatureFlagStore,
)
from hearth_migration.migration.result_verifier import (
    AlertEvent,
    AlertSink,
    InMemoryDiffStore,
    ResultVerifier,
)
from hearth_migration.repositories.base import BudgetSpendingRepository

FLAGS_KEY = "dual_write_feature_flags"


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "postgres: marks tests that require Postgres database"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingAlertSink(AlertSink):
    def __init__(self) -> None:
        self.alerts: List[AlertEvent] = []

    async def send(self, alert: AlertEvent) -> None:
        self.alerts.append(alert)


class FakeBudgetRepository(BudgetSpendingRepository):
    """Dict-backed budget store that logs calls.

    `fail[method] = exc` makes the method raise; `gates[method] = Event`
    makes it wait for the event before doing anything.
    """

    def __init__(self, name: str):
        self.name = name
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.fail: Dict[str, BaseException] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.started: Dict[str, asyncio.Event] = {}
        self._ids = itertools.count(1)
        self._ts = itertools.count(1)

    def called(self, method: str) -> List[Tuple[Any, ...]]:
        return [args for m, args in self.calls if m == method]

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        self.started.setdefault(method, asyncio.Event()).set()
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        if method in self.fail:
            raise self.fail[method]

    def _stamp(self) -> str:
        return f"{self.name}-ts-{next(self._ts)}"

    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        await self._enter("create", data)
        record_id = f"{self.name}-{next(self._ids)}"
        row = {"id": record_id, **dict(data), "created_at": self._stamp(), "updated_at": self._stamp()}
        self.rows[record_id] = row
        return dict(row)

    async def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        await self._enter("get", record_id)
        row = self.rows.get(record_id)
        return dict(row) if row is not None else None

    async def list(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        await self._enter("list", filters, limit)
        rows = [
            dict(r)
            for r in self.rows.values()
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        return rows[:limit] if limit is not None else rows

    async def update(self, record_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        await self._enter("update", record_id, data)
        if record_id not in self.rows:
            raise LookupError(record_id)
        self.rows[record_id].update(data)
        self.rows[record_id]["updated_at"] = self._stamp()
        return dict(self.rows[record_id])

    async def delete(self, record_id: Any) -> None:
        await self._enter("delete", record_id)
        self.rows.pop(record_id, None)

    async def record_spending(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        await self._enter("record_spending", payload)
        return {"id": f"{self.name}-spending", **dict(payload)}

    async def list_spendings(self, budget_id: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        await self._enter("list_spendings", budget_id, limit)
        return []


def flag_row(*, dual_write: bool, supabase_primary: bool) -> Dict[str, Any]:
    return {
        "value": {"enableDualWrite": dual_write, "enableSupabasePrimary": supabase_primary},
        "updated_at": None,
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def flag_store() -> InMemoryFeatureFlagStore:
    return InMemoryFeatureFlagStore({FLAGS_KEY: flag_row(dual_write=False, supabase_primary=False)})


@pytest.fixture
def flag_manager(flag_store: InMemoryFeatureFlagStore, clock: FakeClock) -> FeatureFlagManager:
    return FeatureFlagManager(flag_store, config_key=FLAGS_KEY, ttl_seconds=5.0, clock=clock)


@pytest.fixture
def diff_store() -> InMemoryDiffStore:
    return InMemoryDiffStore()


@pytest.fixture
def alert_sink() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def verifier(diff_store: InMemoryDiffStore, alert_sink: RecordingAlertSink) -> ResultVerifier:
    return ResultVerifier(diff_store, [alert_sink], alert_diff_op_threshold=5)


@pytest.fixture
def store_a() -> FakeBudgetRepository:
    return FakeBudgetRepository("a")


@pytest.fixture
def store_b() -> FakeBudgetRepository:
    return FakeBudgetRepository("b")


async def set_flags(manager: FeatureFlagManager, *, dual_write: bool, supabase_primary: bool) -> None:
    await manager.update_flags(
        FeatureFlags(enable_dual_write=dual_write, enable_supabase_primary=supabase_primary)
    )
