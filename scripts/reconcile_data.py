#!/usr/bin/env python3
"""
CLI script for reconciling data between the legacy store and Supabase.

Reads each supported entity from both stores, compares them field by field
and prints a summary. Intended to run periodically during the dual-write
window.

Examples:
    python scripts/reconcile_data.py --entity budget
    python scripts/reconcile_data.py --entity spending
    python scripts/reconcile_data.py --entity all --report reconcile-report.json
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path
from typing import Dict, List, Tuple

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from hearth_migration.database.async_base import get_async_session_local
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.reconcile import ReconcileResult, ReconcileSpec, reconcile_entity
from hearth_migration.repositories.budgets import (
    SqlBudgetRepository,
    SqlSpendingRepository,
    SupabaseBudgetRepository,
    SupabaseSpendingRepository,
)
from hearth_migration.repositories.rest_table_repository import build_supabase_client

logger = get_logger(__name__)

ENTITY_SPECS: Dict[str, ReconcileSpec] = {
    "budget": ReconcileSpec(
        entity="budget",
        fields=["total_amount", "used_amount", "remaining_amount", "status", "member_id"],
    ),
    # Spendings purchased in the last 30 days
    "spending": ReconcileSpec(
        entity="spending",
        fields=["amount", "budget_id", "category"],
        window_field="purchase_date",
        window_days=30,
    ),
}

# entity -> (legacy repository class, Supabase repository class)
ENTITY_REPOSITORIES: Dict[str, Tuple[type, type]] = {
    "budget": (SqlBudgetRepository, SupabaseBudgetRepository),
    "spending": (SqlSpendingRepository, SupabaseSpendingRepository),
}


async def run(entities: List[str]) -> List[ReconcileResult]:
    session_factory = get_async_session_local()
    results: List[ReconcileResult] = []
    async with build_supabase_client() as client:
        for name in entities:
            spec = ENTITY_SPECS[name]
            logger.info("[MIGRATION][RECONCILE] Reconciling %s ...", name)
            legacy_cls, supabase_cls = ENTITY_REPOSITORIES[name]
            repo_a = legacy_cls(session_factory)
            repo_b = supabase_cls(client)
            results.append(await reconcile_entity(spec, repo_a, repo_b))
    return results


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Compare key entities between the legacy store and Supabase"
    )
    parser.add_argument(
        "--entity",
        default="all",
        choices=sorted(ENTITY_SPECS) + ["all"],
        help="Entity to reconcile (default: all)",
    )
    parser.add_argument(
        "--report",
        type=Path,
        nargs="?",
        const=Path(f"reconcile-report-{date.today().isoformat()}.json"),
        help="Write a JSON report (default path: reconcile-report-<date>.json)",
    )
    parser.add_argument(
        "--preview",
        type=int,
        default=5,
        help="Mismatches to print per entity (default: 5)",
    )

    args = parser.parse_args()

    entities = sorted(ENTITY_SPECS) if args.entity == "all" else [args.entity]
    results = asyncio.run(run(entities))

    total_mismatches = 0
    print("\nReconciliation summary")
    print("-" * 70)
    for result in results:
        print("\n".join(result.summary_lines(preview=args.preview)))
        total_mismatches += result.mismatches
    print("-" * 70)
    print(f"\nTotal mismatches: {total_mismatches}")

    if total_mismatches:
        print("\nCheck the dual_write_diffs table for per-call details.")

    if args.report:
        args.report.write_text(json.dumps([r.to_dict() for r in results], indent=2, default=str))
        print(f"\nReport saved: {args.report}")

    sys.exit(1 if total_mismatches else 0)


if __name__ == "__main__":
    main()
