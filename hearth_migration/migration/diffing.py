"""
Structural diffing between two store results.

Produces JSON-Patch style operations (add / remove / replace) after
normalizing both sides to plain JSON values and removing fields that
legitimately differ between independently generated records.
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping
from uuid import UUID

from pydantic import BaseModel

from hearth_migration.config import DEFAULT_IGNORED_FIELDS

PatchOp = Dict[str, Any]


def to_jsonable(value: Any) -> Any:
    """Convert a store result into plain JSON-compatible data.

    Handles pydantic models, dataclasses, SQLAlchemy ORM rows, UUIDs,
    datetimes, Decimals, enums and sets. Unknown objects fall back to str().
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        items = [to_jsonable(v) for v in value]
        try:
            return sorted(items)
        except TypeError:
            return items
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, Exception):
        return repr(value)

    table = getattr(value, "__table__", None)
    if table is not None:
        return {c.name: to_jsonable(getattr(value, c.key, None)) for c in table.columns}

    return str(value)


def strip_ignored_fields(value: Any, ignore: Iterable[str] = DEFAULT_IGNORED_FIELDS) -> Any:
    """Recursively drop ignored keys from dicts, including dicts nested in lists."""
    ignored = ignore if isinstance(ignore, (set, frozenset)) else frozenset(ignore)
    if isinstance(value, dict):
        return {k: strip_ignored_fields(v, ignored) for k, v in value.items() if k not in ignored}
    if isinstance(value, list):
        return [strip_ignored_fields(v, ignored) for v in value]
    return value


def _escape(token: str) -> str:
    # RFC 6901
    return token.replace("~", "~0").replace("/", "~1")


def _values_equal(a: Any, b: Any) -> bool:
    # bool is an int subclass; True must not equal 1 across stores
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def _diff(a: Any, b: Any, path: str, ops: List[PatchOp]) -> None:
    if isinstance(a, dict) and isinstance(b, dict):
        for key in sorted(a.keys()):
            child = f"{path}/{_escape(key)}"
            if key not in b:
                ops.append({"op": "remove", "path": child})
            else:
                _diff(a[key], b[key], child, ops)
        for key in sorted(b.keys()):
            if key not in a:
                ops.append({"op": "add", "path": f"{path}/{_escape(key)}", "value": b[key]})
        return

    if isinstance(a, list) and isinstance(b, list):
        common = min(len(a), len(b))
        for i in range(common):
            _diff(a[i], b[i], f"{path}/{i}", ops)
        # Remove from the tail so earlier indices stay valid when applied in order
        for i in range(len(a) - 1, common - 1, -1):
            ops.append({"op": "remove", "path": f"{path}/{i}"})
        for i in range(common, len(b)):
            ops.append({"op": "add", "path": f"{path}/{i}", "value": b[i]})
        return

    if not _values_equal(a, b):
        ops.append({"op": "replace", "path": path, "value": b})


def compute_diff(
    a: Any,
    b: Any,
    ignore: Iterable[str] = DEFAULT_IGNORED_FIELDS,
) -> List[PatchOp]:
    """
    Compute the patch that turns `a` into `b`.

    Both sides are normalized with `to_jsonable` and stripped of ignored
    fields first. Object keys compare order-insensitively; list elements
    compare by position, so a reordered list is reported as a difference.

    Args:
        a: Result from store A
        b: Result from store B
        ignore: Field names excluded at every nesting level

    Returns:
        List of {"op", "path", "value"?} dicts; empty when equivalent
    """
    left = strip_ignored_fields(to_jsonable(a), ignore)
    right = strip_ignored_fields(to_jsonable(b), ignore)
    ops: List[PatchOp] = []
    _diff(left, right, "", ops)
    return ops


__all__ = ["PatchOp", "compute_diff", "strip_ignored_fields", "to_jsonable"]
