"""Carry-forward engine — year-end close-out of leave balances.

Business logic:
  - Per leave type, carry ``min(balance, max_days)`` when the balance meets
    ``require_min_balance``; custom policies with carry forward enabled
    supply their own cap
  - Carried days expire ``validity_months`` into the new financial year
  - Execution lapses the old balance, credits the carried days and the
    new-year allocation, and resets the projection to
    ``new_allocation + carried``
  - Tenant runs isolate each employee in its own transaction
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrleave.auth.actor import Actor
from hrleave.carry_forward.schemas import (
    CarryForwardExecution,
    CarryForwardHistoryItem,
    CarryForwardItem,
    CarryForwardPreview,
    CarryForwardResult,
    CarryForwardSummary,
    CarryForwardSummaryItem,
)
from hrleave.common.audit import create_audit_entry
from hrleave.common.constants import Capability, LedgerTransactionType
from hrleave.common.schemas import BatchFailure, BatchReport
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.leave.catalog import LeaveTypeService
from hrleave.leave.rules import CarryForwardRule, LeaveRules
from hrleave.ledger.service import LedgerService, financial_year_label
from hrleave.notifications.service import notify_balance_changed
from hrleave.policies.service import PolicyResolver

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def add_months(start: date, months: int) -> date:
    """Shift *start* by whole months; callers only pass the first of a month."""
    index = start.month - 1 + months
    return start.replace(year=start.year + index // 12, month=index % 12 + 1)


def carry_amount(balance: Decimal, rule: CarryForwardRule) -> Decimal:
    """Days carried for *balance* under *rule*; zero when not eligible."""
    if not rule.enabled or balance < rule.require_min_balance:
        return ZERO
    return max(ZERO, min(balance, rule.max_days))


class CarryForwardEngine:
    """Carry-forward preview and execution against an injected rule table."""

    def __init__(self, rules: LeaveRules) -> None:
        self.rules = rules

    async def _effective_rule(
        self,
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> tuple[CarryForwardRule, str]:
        rule = self.rules.carry_forward_rule(leave_type)
        policy = await PolicyResolver.find_active_policy(db, company_id, employee_id, leave_type)
        if policy is not None and (policy.settings or {}).get("carry_forward"):
            cap = Decimal(str(policy.settings.get("max_carry_forward_days") or 0))
            return rule.model_copy(update={
                "enabled": True,
                "max_days": cap if cap > 0 else rule.max_days,
            }), "custom_policy"
        return rule, "rules"

    # ─────────────────────────────────────────────────────────────────
    # Preview
    # ─────────────────────────────────────────────────────────────────

    async def calculate(
        self,
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        from_year: int,
    ) -> list[CarryForwardItem]:
        """Eligible carry-forward per leave type. Never writes."""
        to_year = from_year + 1
        items: list[CarryForwardItem] = []
        for leave_type in await LeaveTypeService.list_leave_types(db, company_id):
            rule, source = await self._effective_rule(db, company_id, employee_id, leave_type.code)
            if not rule.enabled:
                continue
            balance = (
                await PolicyResolver.resolve_employee_balance(
                    db, company_id, employee_id, leave_type.code,
                )
            ).balance
            amount = carry_amount(balance, rule)
            if amount <= 0:
                continue
            items.append(CarryForwardItem(
                leave_type=leave_type.code,
                from_balance=balance,
                carry_forward_amount=amount,
                expiry_date=add_months(date(to_year, 1, 1), rule.validity_months),
                financial_year=financial_year_label(to_year),
                max_days=rule.max_days,
                rule_source=source,
            ))
        return items

    async def preview(
        self,
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        from_year: int,
    ) -> CarryForwardPreview:
        await EmployeeDirectory.get_employee(db, company_id, employee_id)
        return CarryForwardPreview(
            employee_id=employee_id,
            from_year=from_year,
            to_year=from_year + 1,
            items=await self.calculate(db, company_id, employee_id, from_year),
        )

    # ─────────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────────

    async def execute(
        self,
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        from_year: int,
    ) -> CarryForwardExecution:
        actor.require(Capability.run_carry_forward)
        company_id = actor.company_id
        await EmployeeDirectory.get_employee(db, company_id, employee_id)
        to_year = from_year + 1
        target_fy = financial_year_label(to_year)

        results: list[CarryForwardResult] = []
        skipped: list[str] = []
        for item in await self.calculate(db, company_id, employee_id, from_year):
            code = item.leave_type
            if await LedgerService.has_entry(
                db, employee_id, code, LedgerTransactionType.carry_forward, target_fy,
            ):
                logger.info("Carry forward %s/%s into %s already done; skipping", employee_id, code, target_fy)
                skipped.append(code)
                continue

            await LedgerService.record_expiry(
                db,
                company_id=company_id,
                employee_id=employee_id,
                leave_type=code,
                days=item.from_balance,
                financial_year=financial_year_label(from_year),
                description=f"{financial_year_label(from_year)} balance closed",
                changed_by=actor.user_id,
            )
            await LedgerService.record_carry_forward(
                db,
                company_id=company_id,
                employee_id=employee_id,
                leave_type=code,
                days=item.carry_forward_amount,
                from_year=from_year,
                to_year=to_year,
                expiry_date=item.expiry_date,
                changed_by=actor.user_id,
            )
            allocation = self.rules.new_allocation(code)
            if allocation > 0:
                await LedgerService.record_allocation(
                    db,
                    company_id=company_id,
                    employee_id=employee_id,
                    leave_type=code,
                    days=allocation,
                    financial_year=target_fy,
                    description=f"{target_fy} allocation",
                    changed_by=actor.user_id,
                )

            new_balance = allocation + item.carry_forward_amount
            projection = await EmployeeDirectory.get_projection(db, employee_id, code)
            projection.total = new_balance
            projection.used = ZERO
            projection.balance = new_balance
            await db.flush()

            results.append(CarryForwardResult(
                leave_type=code,
                from_balance=item.from_balance,
                carried=item.carry_forward_amount,
                lapsed=item.from_balance - item.carry_forward_amount,
                new_allocation=allocation,
                new_balance=new_balance,
                expiry_date=item.expiry_date,
                financial_year=target_fy,
            ))
            await notify_balance_changed(
                db,
                company_id=company_id,
                employee_id=employee_id,
                leave_type=code,
                amount=new_balance - item.from_balance,
                balance=new_balance,
                reason=f"carry forward into {target_fy}",
            )

        if results:
            await create_audit_entry(
                db,
                company_id=company_id,
                action="carry_forward",
                entity_type="employee",
                entity_id=employee_id,
                actor_id=actor.employee_id,
                actor_user_id=actor.user_id,
                new_values={
                    "from_year": from_year,
                    "carried": {r.leave_type: str(r.carried) for r in results},
                },
            )
        logger.info(
            "Carry forward %s -> %s for %s: %d carried, %d skipped",
            from_year, to_year, employee_id, len(results), len(skipped),
        )
        return CarryForwardExecution(
            employee_id=employee_id,
            from_year=from_year,
            to_year=to_year,
            results=results,
            skipped=skipped,
        )

    async def execute_for_company(
        self,
        session_factory: async_sessionmaker,
        actor: Actor,
        from_year: int,
    ) -> BatchReport:
        """Run :meth:`execute` for every active employee, one transaction each."""
        actor.require(Capability.run_carry_forward)
        async with session_factory() as session:
            employees = [
                (e.id, e.employee_code)
                for e in await EmployeeDirectory.list_active_employees(session, actor.company_id)
            ]

        report = BatchReport(total_employees=len(employees))
        for employee_id, employee_code in employees:
            report.processed += 1
            try:
                async with session_factory() as session:
                    async with session.begin():
                        outcome = await self.execute(session, actor, employee_id, from_year)
            except Exception as exc:
                report.failed += 1
                report.failures.append(BatchFailure(
                    employee_id=employee_id,
                    employee_code=employee_code,
                    code=getattr(exc, "code", type(exc).__name__),
                    error=str(exc),
                ))
                logger.error("Carry forward failed for %s: %s", employee_id, exc, exc_info=True)
                continue
            report.succeeded += 1
            report.total_days += sum((r.carried for r in outcome.results), ZERO)

        logger.info(
            "Carry forward %s for company %s: %d/%d succeeded, %d failed",
            from_year, actor.company_id, report.succeeded, report.total_employees, report.failed,
        )
        return report

    # ─────────────────────────────────────────────────────────────────
    # Reporting
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_history(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
    ) -> list[CarryForwardHistoryItem]:
        await EmployeeDirectory.get_employee(db, company_id, employee_id)
        entries = await LedgerService.get_entries_by_type(
            db, company_id, LedgerTransactionType.carry_forward, employee_id=employee_id,
        )
        history = []
        for entry in reversed(entries):
            expiry = (entry.details or {}).get("expiry_date")
            history.append(CarryForwardHistoryItem(
                id=entry.id,
                leave_type=entry.leave_type,
                amount=entry.amount,
                balance_after=entry.balance_after,
                financial_year=entry.financial_year,
                transaction_date=entry.transaction_date,
                expiry_date=date.fromisoformat(expiry) if expiry else None,
                description=entry.description,
            ))
        return history

    @staticmethod
    async def get_summary(
        db: AsyncSession,
        company_id: str,
        financial_year: str,
    ) -> CarryForwardSummary:
        """Per leave type: employees that carried days into *financial_year* and totals."""
        entries = await LedgerService.get_entries_by_type(
            db, company_id, LedgerTransactionType.carry_forward, financial_year=financial_year,
        )
        employees: dict[str, set] = defaultdict(set)
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for entry in entries:
            employees[entry.leave_type].add(entry.employee_id)
            totals[entry.leave_type] += Decimal(str(entry.amount))

        items = []
        for code in sorted(totals):
            count = len(employees[code])
            items.append(CarryForwardSummaryItem(
                leave_type=code,
                total_employees=count,
                total_days=totals[code],
                avg_days=(totals[code] / count).quantize(Decimal("0.01"), ROUND_HALF_UP),
            ))
        return CarryForwardSummary(financial_year=financial_year, leave_types=items)
