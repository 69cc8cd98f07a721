"""
Run the lifecycle scan once.

Usage:
    python scripts/run_lifecycle_scan.py                  # all tenants, today
    python scripts/run_lifecycle_scan.py --as-of 2024-03-01
    python scripts/run_lifecycle_scan.py --tenant <uuid>
"""
import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

sys.path.insert(0, str(Path(__file__).parent.parent))

from batchtrace.config import settings
from batchtrace.database import init_db
from batchtrace.jobs.lifecycle_scanner import run_lifecycle_scan


async def main(as_of, tenant_id, create_tables):
    if create_tables:
        await init_db()

    summary = await run_lifecycle_scan(as_of=as_of, tenant_id=tenant_id)

    print(f"\nLifecycle scan as of {summary.as_of.isoformat()}")
    print("-" * 72)
    print(f"  {'Rule':<30} {'Evaluated':>10} {'Transitioned':>13} {'Notified':>9} {'Errors':>7}")
    for rule_id, result in summary.per_rule.items():
        print(
            f"  {rule_id:<30} {result.evaluated:>10} {result.transitioned:>13} "
            f"{result.notified:>9} {len(result.errors):>7}"
        )
        for error in result.errors:
            print(f"      ! {error}")
    return 1 if summary.has_errors else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the lifecycle scan once")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None,
                        help="Date treated as today (YYYY-MM-DD)")
    parser.add_argument("--tenant", type=UUID, default=None, help="Restrict to one tenant")
    parser.add_argument("--create-tables", action="store_true",
                        help="Create missing tables before scanning")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main(args.as_of, args.tenant, args.create_tables)))
