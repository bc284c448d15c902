#!/usr/bin/env python3
"""Year-end carry forward — close out a year for one tenant from cron.

Runs the same engine as ``POST /api/v1/carry-forward/run`` with a system
actor. Each employee is committed separately; failures are listed at the
end and make the exit code non-zero.

Usage:
    python scripts/run_year_end.py --company acme --from-year 2025
    python scripts/run_year_end.py --company acme --from-year 2025 --dry-run
    python scripts/run_year_end.py --company acme --from-year 2025 --json

Exit codes:
    0 = every employee processed
    1 = one or more employees failed
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

from hrleave.auth.actor import Actor
from hrleave.carry_forward.service import CarryForwardEngine
from hrleave.common.constants import UserRole
from hrleave.config import settings
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.database import async_session_factory, engine
from hrleave.leave.rules import load_leave_rules

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("run_year_end")

SYSTEM_USER = "system:year-end"


async def preview_company(engine_: CarryForwardEngine, company_id: str, from_year: int) -> dict:
    """Sum what every active employee would carry, without writing."""
    totals: dict[str, Decimal] = {}
    async with async_session_factory() as session:
        employees = await EmployeeDirectory.list_active_employees(session, company_id)
        for employee in employees:
            for item in await engine_.calculate(session, company_id, employee.id, from_year):
                totals[item.leave_type] = (
                    totals.get(item.leave_type, Decimal("0")) + item.carry_forward_amount
                )
    return {
        "company_id": company_id,
        "from_year": from_year,
        "total_employees": len(employees),
        "carry_forward_days": {code: str(days) for code, days in sorted(totals.items())},
    }


async def run(company_id: str, from_year: int, dry_run: bool) -> dict:
    async with async_session_factory() as session:
        rules = await load_leave_rules(session, company_id)
    engine_ = CarryForwardEngine(rules)

    try:
        if dry_run:
            return await preview_company(engine_, company_id, from_year)
        actor = Actor.build(user_id=SYSTEM_USER, role=UserRole.superadmin, company_id=company_id)
        report = await engine_.execute_for_company(async_session_factory, actor, from_year)
        return report.model_dump(mode="json")
    finally:
        await engine.dispose()


# ══════════════════════════════════════════════════════════════════════
# Main
# ══════════════════════════════════════════════════════════════════════

def main():
    parser = argparse.ArgumentParser(
        description="Close out a year: carry forward, lapse and re-allocate leave balances",
    )
    parser.add_argument("--company", required=True, help="Tenant (company) id")
    parser.add_argument("--from-year", type=int, required=True, help="Year being closed, e.g. 2025")
    parser.add_argument("--dry-run", action="store_true", help="Preview totals, write nothing")
    parser.add_argument("--json", action="store_true", help="Machine-readable output")
    args = parser.parse_args()

    logger.info(
        "Year-end for %s, %d → %d%s",
        args.company, args.from_year, args.from_year + 1, " (dry run)" if args.dry_run else "",
    )
    result = asyncio.run(run(args.company, args.from_year, args.dry_run))

    if args.json:
        print(json.dumps(result, indent=2))
    elif args.dry_run:
        print(f"Employees: {result['total_employees']}")
        for code, days in result["carry_forward_days"].items():
            print(f"  {code:<12} {days} day(s)")
    else:
        print(
            f"Processed {result['processed']}/{result['total_employees']}: "
            f"{result['succeeded']} succeeded, {result['failed']} failed, "
            f"{result['total_days']} day(s) carried"
        )
        for failure in result["failures"]:
            print(f"  ✗ {failure['employee_code'] or failure['employee_id']}: {failure['error']}")

    if not args.dry_run and result["failed"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
