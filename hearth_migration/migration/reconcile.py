"""
Data reconciliation between store A and Supabase.

Periodically compares whole entity tables across the two stores so that
divergence the dual-write path could not repair (failed compensation,
update/delete partial failures) gets found and fixed by an operator.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from hearth_migration.config import DEFAULT_IGNORED_FIELDS
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.diffing import to_jsonable

logger = get_logger(__name__)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_DATETIME = TypeAdapter(datetime)


def to_snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def normalize_row(row: Any) -> Dict[str, Any]:
    """Plain dict with snake_case keys, so camelCase ORM rows line up with table rows."""
    data = to_jsonable(row)
    if not isinstance(data, dict):
        raise TypeError(f"Expected a mapping row, got {type(row).__name__}")
    return {to_snake(k): v for k, v in data.items()}


@dataclass(frozen=True)
class ReconcileSpec:
    entity: str
    key_field: str = "id"
    # None compares every field that is not ignored
    fields: Optional[Sequence[str]] = None
    numeric_tolerance: float = 0.01
    ignored_fields: frozenset = field(default_factory=lambda: DEFAULT_IGNORED_FIELDS - {"id"})
    filters: Optional[Mapping[str, Any]] = None
    # Only rows whose `window_field` falls in the last `window_days` days
    window_field: Optional[str] = None
    window_days: Optional[int] = None


@dataclass
class Mismatch:
    id: str
    field: str
    value_a: Any
    value_b: Any


@dataclass
class ReconcileResult:
    entity: str
    total_records: int = 0
    details: List[Mismatch] = field(default_factory=list)

    @property
    def mismatches(self) -> int:
        return len(self.details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "total_records": self.total_records,
            "mismatches": self.mismatches,
            "details": [asdict(d) for d in self.details],
        }

    def summary_lines(self, preview: int = 5) -> List[str]:
        lines = [
            f"{self.entity}:",
            f"  total records: {self.total_records}",
            f"  mismatches: {self.mismatches}",
        ]
        if not self.details:
            lines.append("  OK - stores are consistent")
            return lines
        for d in self.details[:preview]:
            lines.append(f"    - id: {d.id}, field: {d.field}")
            lines.append(f"      store A: {d.value_a!r}")
            lines.append(f"      Supabase: {d.value_b!r}")
        if len(self.details) > preview:
            lines.append(f"    ... {len(self.details) - preview} more")
        return lines


def _equal(a: Any, b: Any, tolerance: float) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b or (type(a) is type(b) and a == b)
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return abs(a - b) < tolerance
    return a == b


def reconcile_records(
    spec: ReconcileSpec,
    rows_a: Iterable[Any],
    rows_b: Iterable[Any],
) -> ReconcileResult:
    """
    Pair rows by key and report per-field differences.

    Rows present on only one side are reported with field `_exists`.
    """
    key = to_snake(spec.key_field)
    ignored = {to_snake(f) for f in spec.ignored_fields}
    by_id_a = {str(r.get(key)): r for r in (normalize_row(x) for x in rows_a)}
    by_id_b = {str(r.get(key)): r for r in (normalize_row(x) for x in rows_b)}

    result = ReconcileResult(entity=spec.entity, total_records=len(by_id_a.keys() | by_id_b.keys()))

    for record_id in sorted(by_id_a.keys() | by_id_b.keys()):
        row_a = by_id_a.get(record_id)
        row_b = by_id_b.get(record_id)
        if row_a is None or row_b is None:
            result.details.append(
                Mismatch(id=record_id, field="_exists", value_a=row_a is not None, value_b=row_b is not None)
            )
            continue

        if spec.fields is not None:
            fields = [to_snake(f) for f in spec.fields]
        else:
            fields = sorted((row_a.keys() | row_b.keys()) - ignored - {key})

        for name in fields:
            va, vb = row_a.get(name), row_b.get(name)
            if not _equal(va, vb, spec.numeric_tolerance):
                result.details.append(Mismatch(id=record_id, field=name, value_a=va, value_b=vb))

    logger.info(
        "[MIGRATION][RECONCILE] %s: %d records, %d mismatches",
        spec.entity,
        result.total_records,
        result.mismatches,
    )
    return result


def _as_utc(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        parsed = _DATETIME.validate_python(value)
    except ValidationError:
        logger.warning("[MIGRATION][RECONCILE] Unparseable timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def within_window(spec: ReconcileSpec, rows: Iterable[Any], now: Optional[datetime] = None) -> List[Any]:
    """Keep rows whose window field is at or after `now - window_days`.

    Rows with a missing or unparseable timestamp are dropped. Without a
    window on the spec every row is kept.
    """
    rows = list(rows)
    if not spec.window_field or spec.window_days is None:
        return rows
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=spec.window_days)
    name = to_snake(spec.window_field)
    kept = []
    for row in rows:
        stamp = _as_utc(normalize_row(row).get(name))
        if stamp is not None and stamp >= cutoff:
            kept.append(row)
    return kept


async def reconcile_entity(
    spec: ReconcileSpec,
    repo_a: Any,
    repo_b: Any,
    *,
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """Read both stores through their repositories' `list()` and reconcile.

    Soft-deleted rows never reach here: repositories with a soft delete
    column leave stamped rows out of `list()`.
    """
    filters = dict(spec.filters) if spec.filters else None
    rows_a = within_window(spec, await repo_a.list(filters=filters), now)
    rows_b = within_window(spec, await repo_b.list(filters=filters), now)
    return reconcile_records(spec, rows_a, rows_b)


__all__ = [
    "Mismatch",
    "ReconcileResult",
    "ReconcileSpec",
    "normalize_row",
    "reconcile_entity",
    "reconcile_records",
    "to_snake",
    "within_window",
]
