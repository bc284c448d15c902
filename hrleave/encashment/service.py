"""Encashment engine — converting unused leave into a payout.

Eligibility, in order: the leave type is encashable, the employee has the
minimum months of service, the balance meets ``min_balance``, the request
fits ``min(balance - min_balance, max_encashment_days)``, and it fits what
is left of that cap after this calendar year's encashments.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrleave.auth.actor import Actor
from hrleave.common.audit import create_audit_entry
from hrleave.common.constants import Capability, LedgerTransactionType
from hrleave.common.exceptions import ValidationException
from hrleave.common.schemas import BatchFailure, BatchReport
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.encashment.schemas import (
    EncashmentCalculation,
    EncashmentCompanySummary,
    EncashmentEmployeeTotal,
    EncashmentHistory,
    EncashmentHistoryItem,
    EncashmentResult,
)
from hrleave.leave.catalog import LeaveTypeService
from hrleave.leave.rules import EncashmentRule, LeaveRules
from hrleave.ledger.service import LedgerService
from hrleave.notifications.service import notify_balance_changed
from hrleave.policies.service import PolicyResolver

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")
DAYS_PER_MONTH = Decimal("30")
INELIGIBLE_CODES = frozenset({
    "encashment-not-eligible",
    "encashment-min-service",
    "encashment-min-balance",
    "encashment-nothing-to-encash",
})


def _today() -> date:
    return date.today()


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def _fmt(value: Decimal) -> str:
    return f"{value.normalize():f}"


def months_of_service(date_of_joining: Optional[date], on: date) -> int:
    if date_of_joining is None:
        return 0
    months = (on.year - date_of_joining.year) * 12 + (on.month - date_of_joining.month)
    return max(0, months)


def daily_rate(basic_salary: Any) -> Decimal:
    return (_dec(basic_salary) / DAYS_PER_MONTH).quantize(CENT, ROUND_HALF_UP)


def check_eligibility(
    rule: EncashmentRule,
    leave_type: str,
    *,
    months: int,
    balance: Decimal,
    days: Decimal,
    max_encashable: Decimal,
    remaining: Decimal,
) -> tuple[Optional[str], Optional[str]]:
    """Return ``(reason, code)`` for the first failed rule, or ``(None, None)``."""
    if not rule.enabled:
        return f"{leave_type} leave is not eligible for encashment", "encashment-not-eligible"
    if months < rule.require_min_service:
        return (
            f"Minimum {rule.require_min_service} months of service required",
            "encashment-min-service",
        )
    if balance < rule.min_balance:
        return f"Minimum {_fmt(rule.min_balance)} days balance required", "encashment-min-balance"
    if days <= 0:
        return "No days are available to encash", "encashment-nothing-to-encash"
    if days > max_encashable:
        return f"Cannot encash more than {_fmt(max_encashable)} days", "encashment-max-days"
    if days > remaining:
        return (
            f"Annual encashment limit exceeded. Remaining: {_fmt(remaining)} days",
            "encashment-annual-limit",
        )
    return None, None


class EncashmentEngine:
    """Encashment preview and execution against an injected rule table."""

    def __init__(self, rules: LeaveRules) -> None:
        self.rules = rules

    async def calculate(
        self,
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        days_requested: Optional[Decimal] = None,
    ) -> EncashmentCalculation:
        """Eligibility and amount; without *days_requested* the maximum is assumed."""
        employee = await EmployeeDirectory.get_employee(db, company_id, employee_id)
        code = (await LeaveTypeService.get_by_code(db, company_id, leave_type)).code
        rule = self.rules.encashment_rule(code)
        today = _today()

        months = months_of_service(employee.date_of_joining, today)
        balance = (
            await PolicyResolver.resolve_employee_balance(db, company_id, employee_id, code)
        ).balance
        encashed = await LedgerService.get_encashed_days(db, employee_id, code, today.year)
        max_encashable = max(ZERO, min(balance - rule.min_balance, rule.max_encashment_days))
        remaining = max(ZERO, max_encashable - encashed)
        days = remaining if days_requested is None else _dec(days_requested)
        rate = daily_rate(employee.basic_salary)

        reason, reason_code = check_eligibility(
            rule, code,
            months=months,
            balance=balance,
            days=days,
            max_encashable=max_encashable,
            remaining=remaining,
        )
        return EncashmentCalculation(
            employee_id=employee_id,
            leave_type=code,
            eligible=reason is None,
            reason=reason,
            code=reason_code,
            months_of_service=months,
            current_balance=balance,
            min_balance=rule.min_balance,
            max_encashable_days=max_encashable,
            encashed_this_year=encashed,
            remaining_encashment_days=remaining,
            days_requested=days,
            daily_rate=rate,
            encashment_amount=(rate * days).quantize(CENT, ROUND_HALF_UP),
        )

    async def execute(
        self,
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        leave_type: str,
        days: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> EncashmentResult:
        """Recalculate, then debit the ledger; raises ValidationException when not eligible."""
        actor.require(Capability.run_encashment)
        calc = await self.calculate(db, actor.company_id, employee_id, leave_type, days)
        if not calc.eligible:
            raise ValidationException(
                {"days": [calc.reason]},
                code=calc.code,
                context={
                    "remaining_encashment_days": str(calc.remaining_encashment_days),
                    "max_encashable_days": str(calc.max_encashable_days),
                },
            )

        entry = await LedgerService.record_encashment(
            db,
            company_id=actor.company_id,
            employee_id=employee_id,
            leave_type=calc.leave_type,
            days=calc.days_requested,
            encashment_amount=calc.encashment_amount,
            daily_rate=calc.daily_rate,
            reason=reason,
            changed_by=actor.user_id,
        )
        await create_audit_entry(
            db,
            company_id=actor.company_id,
            action="encash",
            entity_type="employee",
            entity_id=employee_id,
            actor_id=actor.employee_id,
            actor_user_id=actor.user_id,
            new_values={
                "leave_type": calc.leave_type,
                "days": calc.days_requested,
                "amount": calc.encashment_amount,
                "balance_after": entry.balance_after,
            },
        )
        await notify_balance_changed(
            db,
            company_id=actor.company_id,
            employee_id=employee_id,
            leave_type=calc.leave_type,
            amount=-calc.days_requested,
            balance=entry.balance_after,
            reason="encashment",
        )
        logger.info(
            "Encashed %s %s day(s) for %s: amount %s",
            calc.days_requested, calc.leave_type, employee_id, calc.encashment_amount,
        )
        return EncashmentResult(calculation=calc, entry_id=entry.id, balance_after=entry.balance_after)

    async def execute_for_company(
        self,
        session_factory: async_sessionmaker,
        actor: Actor,
        leave_type: str,
        days: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> BatchReport:
        """Encash for every active employee; ineligible employees are skipped."""
        actor.require(Capability.run_encashment)
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
                        result = await self.execute(
                            session, actor, employee_id, leave_type, days, reason,
                        )
            except ValidationException as exc:
                if exc.code in INELIGIBLE_CODES:
                    report.skipped += 1
                    continue
                report.failed += 1
                report.failures.append(BatchFailure(
                    employee_id=employee_id, employee_code=employee_code,
                    code=exc.code, error=str(exc.errors or exc.detail),
                ))
                continue
            except Exception as exc:
                report.failed += 1
                report.failures.append(BatchFailure(
                    employee_id=employee_id,
                    employee_code=employee_code,
                    code=getattr(exc, "code", type(exc).__name__),
                    error=str(exc),
                ))
                logger.error("Encashment failed for %s: %s", employee_id, exc, exc_info=True)
                continue
            report.succeeded += 1
            report.total_days += result.calculation.days_requested

        logger.info(
            "Encashment of %s for company %s: %d succeeded, %d skipped, %d failed",
            leave_type, actor.company_id, report.succeeded, report.skipped, report.failed,
        )
        return report

    # ─────────────────────────────────────────────────────────────────
    # Reporting
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _history_item(entry) -> EncashmentHistoryItem:
        details = entry.details or {}
        return EncashmentHistoryItem(
            id=entry.id,
            leave_type=entry.leave_type,
            days=abs(_dec(entry.amount)),
            encashment_amount=_dec(details.get("encashment_amount")),
            daily_rate=_dec(details.get("daily_rate")),
            transaction_date=entry.transaction_date,
            reason=entry.adjustment_reason,
        )

    @staticmethod
    async def get_history(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> EncashmentHistory:
        await EmployeeDirectory.get_employee(db, company_id, employee_id)
        year = year or _today().year
        entries = await LedgerService.get_entries_by_type(
            db, company_id, LedgerTransactionType.encashed, employee_id=employee_id, year=year,
        )
        items = [EncashmentEngine._history_item(e) for e in entries]
        return EncashmentHistory(
            employee_id=employee_id,
            year=year,
            items=items,
            total_days=sum((i.days for i in items), ZERO),
            total_amount=sum((i.encashment_amount for i in items), ZERO),
        )

    @staticmethod
    async def get_company_summary(
        db: AsyncSession,
        company_id: str,
        year: Optional[int] = None,
    ) -> EncashmentCompanySummary:
        year = year or _today().year
        entries = await LedgerService.get_entries_by_type(
            db, company_id, LedgerTransactionType.encashed, year=year,
        )
        grouped: dict[uuid.UUID, list[EncashmentHistoryItem]] = defaultdict(list)
        for entry in entries:
            grouped[entry.employee_id].append(EncashmentEngine._history_item(entry))

        directory = await EmployeeDirectory.get_employees_by_ids(db, company_id, grouped)
        totals = []
        for employee_id, items in grouped.items():
            employee = directory.get(employee_id)
            totals.append(EncashmentEmployeeTotal(
                employee_id=employee_id,
                employee_code=employee.employee_code if employee else None,
                name=employee.display_name if employee else None,
                encashment_count=len(items),
                total_days=sum((i.days for i in items), ZERO),
                total_amount=sum((i.encashment_amount for i in items), ZERO),
            ))
        totals.sort(key=lambda t: t.total_amount, reverse=True)
        return EncashmentCompanySummary(
            year=year,
            employees=totals,
            total_days=sum((t.total_days for t in totals), ZERO),
            total_amount=sum((t.total_amount for t in totals), ZERO),
        )
