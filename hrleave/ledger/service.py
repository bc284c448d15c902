"""Ledger service — the only writer of leave ledger entries.

Business logic:
  - Running balance per (employee, leave type): every entry stores
    ``balance_before`` / ``amount`` / ``balance_after`` and chains onto the
    previous entry of the same key
  - Read-latest-then-append is linearized per key: the latest row is read
    ``FOR UPDATE`` and the next ``sequence`` is unique per chain
  - The first write for a key is preceded by an ``opening`` entry
  - Each append refreshes the ``EmployeeLeaveBalance`` projection
  - History, per-financial-year views, aggregates and export rows
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.common.constants import DEFAULT_LEDGER_HISTORY, MAX_LEDGER_HISTORY, LedgerTransactionType
from hrleave.common.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
)
from hrleave.core_hr.models import EmployeeLeaveBalance
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.leave.catalog import LeaveTypeService
from hrleave.ledger.models import LeaveLedgerEntry

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
TT = LedgerTransactionType

EXPORT_COLUMNS = (
    "Date",
    "Leave Type",
    "Transaction Type",
    "Amount",
    "Balance Before",
    "Balance After",
    "Description",
    "Leave ID",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def financial_year_label(year: int) -> str:
    return f"FY{year}-{year + 1}"


def _positive(days: Any, field: str = "days") -> Decimal:
    days = _dec(days)
    if days <= 0:
        raise ValidationException({field: ["Must be greater than zero."]})
    return days


# ═════════════════════════════════════════════════════════════════════
# LedgerService
# ═════════════════════════════════════════════════════════════════════


class LedgerService:
    """Append-only balance ledger operations."""

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_latest_entry(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> Optional[LeaveLedgerEntry]:
        """Most recent non-deleted entry of the chain."""
        query = (
            select(LeaveLedgerEntry)
            .where(
                LeaveLedgerEntry.employee_id == employee_id,
                LeaveLedgerEntry.leave_type == leave_type,
                LeaveLedgerEntry.is_deleted.is_(False),
            )
            .order_by(LeaveLedgerEntry.sequence.desc())
            .limit(1)
        )
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_latest_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        default: Optional[Decimal] = None,
    ) -> Decimal:
        """``balance_after`` of the latest entry, else *default*.

        Raises NotFoundException when the chain is empty and no default is given.
        """
        latest = await LedgerService.get_latest_entry(db, employee_id, leave_type)
        if latest is not None:
            return _dec(latest.balance_after)
        if default is None:
            raise NotFoundException("LeaveLedger", f"{employee_id}/{leave_type}")
        return _dec(default)

    @staticmethod
    async def has_entry(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        transaction_type: LedgerTransactionType,
        financial_year: str,
    ) -> bool:
        result = await db.execute(
            select(LeaveLedgerEntry.id).where(
                LeaveLedgerEntry.employee_id == employee_id,
                LeaveLedgerEntry.leave_type == leave_type,
                LeaveLedgerEntry.transaction_type == transaction_type,
                LeaveLedgerEntry.financial_year == financial_year,
                LeaveLedgerEntry.is_deleted.is_(False),
            ).limit(1)
        )
        return result.first() is not None

    @staticmethod
    async def get_entries_by_type(
        db: AsyncSession,
        company_id: str,
        transaction_type: LedgerTransactionType,
        *,
        employee_id: Optional[uuid.UUID] = None,
        financial_year: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Sequence[LeaveLedgerEntry]:
        """Tenant-wide entries of one type, oldest first."""
        query = select(LeaveLedgerEntry).where(
            LeaveLedgerEntry.company_id == company_id,
            LeaveLedgerEntry.transaction_type == transaction_type,
            LeaveLedgerEntry.is_deleted.is_(False),
        )
        if employee_id is not None:
            query = query.where(LeaveLedgerEntry.employee_id == employee_id)
        if financial_year:
            query = query.where(LeaveLedgerEntry.financial_year == financial_year)
        if year:
            query = query.where(LeaveLedgerEntry.year == year)
        result = await db.execute(
            query.order_by(LeaveLedgerEntry.transaction_date, LeaveLedgerEntry.sequence)
        )
        return result.scalars().all()

    @staticmethod
    async def _lock_chain_head(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> Optional[LeaveLedgerEntry]:
        """Newest row of the chain, deleted or not, under a row lock.

        The next entry takes ``head.sequence + 1``. A writer that waited on
        the lock and still sees the old head computes a sequence that is
        already taken, so its insert fails on ``uq_ledger_chain_sequence``.
        """
        result = await db.execute(
            select(LeaveLedgerEntry)
            .where(
                LeaveLedgerEntry.employee_id == employee_id,
                LeaveLedgerEntry.leave_type == leave_type,
            )
            .order_by(LeaveLedgerEntry.sequence.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalars().first()

    # ─────────────────────────────────────────────────────────────────
    # Append primitive
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _insert(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        sequence: int,
        transaction_type: LedgerTransactionType,
        amount: Decimal,
        balance_before: Decimal,
        financial_year: Optional[str] = None,
        leave_request_id: Optional[uuid.UUID] = None,
        custom_policy_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        adjustment_reason: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> LeaveLedgerEntry:
        now = _now()
        entry = LeaveLedgerEntry(
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            sequence=sequence,
            transaction_type=transaction_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_before + amount,
            transaction_date=now,
            financial_year=financial_year or financial_year_label(now.year),
            year=now.year,
            month=now.month,
            leave_request_id=leave_request_id,
            custom_policy_id=custom_policy_id,
            description=description,
            details=details,
            adjustment_reason=adjustment_reason,
            changed_by=changed_by,
        )
        db.add(entry)
        try:
            await db.flush()
        except IntegrityError as exc:
            logger.warning(
                "Concurrent ledger append for %s/%s: %s", employee_id, leave_type, exc,
            )
            raise ConflictError(
                "The balance was changed by another operation. Please retry.",
                code="concurrent-ledger-write",
            ) from exc

        await LedgerService._apply_to_projection(db, entry)
        logger.info(
            "Ledger %s %s/%s amount=%s balance %s -> %s",
            transaction_type.value, employee_id, leave_type,
            amount, balance_before, entry.balance_after,
        )
        return entry

    @staticmethod
    async def _append(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        transaction_type: LedgerTransactionType,
        amount: Decimal,
        opening_balance: Optional[Decimal] = None,
        enforce_floor: bool = False,
        **fields: Any,
    ) -> LeaveLedgerEntry:
        """Lock the chain head, then append one entry after the latest live one.

        An empty chain first gets an ``opening`` entry at the projection's
        balance, else *opening_balance*, else the resolved quota. With
        ``enforce_floor`` the append fails when the balance would drop below
        zero.
        """
        head = await LedgerService._lock_chain_head(db, employee_id, leave_type)
        sequence = (head.sequence if head is not None else 0) + 1
        latest = head
        if head is not None and head.is_deleted:
            latest = await LedgerService.get_latest_entry(db, employee_id, leave_type)
        if latest is None:
            projection = await EmployeeDirectory.get_projection(db, employee_id, leave_type)
            if projection is not None:
                opening_balance = _dec(projection.balance)
            elif opening_balance is None:
                from hrleave.policies.service import PolicyResolver

                opening_balance = (
                    await PolicyResolver.resolve_quota(db, company_id, employee_id, leave_type)
                ).quota
            latest = await LedgerService._insert(
                db,
                company_id=company_id,
                employee_id=employee_id,
                leave_type=leave_type,
                sequence=sequence,
                transaction_type=TT.opening,
                amount=_dec(opening_balance),
                balance_before=ZERO,
                description="Opening balance",
                changed_by=fields.get("changed_by"),
            )
            sequence += 1

        balance_before = _dec(latest.balance_after)
        if enforce_floor and balance_before + amount < 0:
            raise InsufficientBalanceError(leave_type, balance_before, -amount)

        return await LedgerService._insert(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            sequence=sequence,
            transaction_type=transaction_type,
            amount=amount,
            balance_before=balance_before,
            **fields,
        )

    @staticmethod
    async def _apply_to_projection(db: AsyncSession, entry: LeaveLedgerEntry) -> None:
        projection = await EmployeeDirectory.get_projection(
            db, entry.employee_id, entry.leave_type,
        )
        amount = _dec(entry.amount)
        if projection is None:
            projection = EmployeeLeaveBalance(
                company_id=entry.company_id,
                employee_id=entry.employee_id,
                leave_type=entry.leave_type,
                total=ZERO,
                used=ZERO,
                balance=ZERO,
            )
            db.add(projection)
            if entry.transaction_type == TT.opening:
                projection.total = amount

        if entry.transaction_type in (TT.used, TT.encashed):
            projection.used = _dec(projection.used) - amount
        elif entry.transaction_type == TT.restored:
            projection.used = max(ZERO, _dec(projection.used) - amount)
        elif entry.transaction_type in (
            TT.allocated, TT.adjustment, TT.custom_adjustment, TT.carry_forward, TT.expired,
        ):
            projection.total = _dec(projection.total) + amount
        projection.balance = _dec(entry.balance_after)
        await db.flush()

    # ─────────────────────────────────────────────────────────────────
    # Recording operations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def record_usage(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        leave_request_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        description: Optional[str] = None,
        allow_negative: bool = False,
        skip_balance_check: bool = False,
        opening_balance: Optional[Decimal] = None,
        changed_by: Optional[str] = None,
    ) -> LeaveLedgerEntry:
        """Debit *days*; fails with InsufficientBalanceError unless overridden."""
        days = _positive(days)
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.used,
            amount=-days,
            opening_balance=opening_balance,
            enforce_floor=not (allow_negative or skip_balance_check),
            leave_request_id=leave_request_id,
            description=description or f"{leave_type} leave used",
            details={
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
                "duration": str(days),
            },
            changed_by=changed_by,
        )

    @staticmethod
    async def record_restoration(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        leave_request_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> LeaveLedgerEntry:
        """Credit *days* back; restoration has no balance ceiling or floor."""
        days = _positive(days)
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.restored,
            amount=days,
            leave_request_id=leave_request_id,
            description=description or f"{leave_type} leave restored",
            details={"duration": str(days)},
            changed_by=changed_by,
        )

    @staticmethod
    async def record_allocation(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        financial_year: Optional[str] = None,
        description: Optional[str] = None,
        changed_by: Optional[str] = None,
        opening_balance: Optional[Decimal] = None,
    ) -> LeaveLedgerEntry:
        days = _positive(days)
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.allocated,
            amount=days,
            opening_balance=opening_balance,
            financial_year=financial_year,
            description=description or f"{leave_type} leave allocated",
            changed_by=changed_by,
        )

    @staticmethod
    async def record_carry_forward(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        from_year: int,
        to_year: int,
        expiry_date: Optional[date] = None,
        changed_by: Optional[str] = None,
        opening_balance: Optional[Decimal] = None,
    ) -> LeaveLedgerEntry:
        """Credit carried days, tagged with the destination financial year."""
        days = _positive(days)
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.carry_forward,
            amount=days,
            opening_balance=opening_balance,
            financial_year=financial_year_label(to_year),
            description=f"Carry forward from {financial_year_label(from_year)}",
            details={
                "from_year": from_year,
                "to_year": to_year,
                "expiry_date": expiry_date.isoformat() if expiry_date else None,
            },
            changed_by=changed_by,
        )

    @staticmethod
    async def record_expiry(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        financial_year: Optional[str] = None,
        description: Optional[str] = None,
        changed_by: Optional[str] = None,
        opening_balance: Optional[Decimal] = None,
    ) -> LeaveLedgerEntry:
        days = _positive(days)
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.expired,
            amount=-days,
            opening_balance=opening_balance,
            financial_year=financial_year,
            description=description or f"{leave_type} balance lapsed",
            changed_by=changed_by,
        )

    @staticmethod
    async def record_encashment(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        encashment_amount: Decimal,
        daily_rate: Decimal,
        reason: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> LeaveLedgerEntry:
        """Debit encashed days; eligibility is checked by the encashment engine."""
        days = _positive(days)
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.encashed,
            amount=-days,
            enforce_floor=True,
            description=f"Encashed {days} day(s) of {leave_type} leave",
            details={
                "days": str(days),
                "encashment_amount": str(encashment_amount),
                "daily_rate": str(daily_rate),
            },
            adjustment_reason=reason or "Leave encashment",
            changed_by=changed_by,
        )

    @staticmethod
    async def record_adjustment(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        amount: Decimal,
        reason: str,
        changed_by: Optional[str] = None,
        allow_negative: bool = False,
    ) -> LeaveLedgerEntry:
        """Manual signed correction by HR/admin."""
        amount = _dec(amount)
        if amount == 0:
            raise ValidationException({"amount": ["Adjustment amount cannot be zero."]})
        if not (reason or "").strip():
            raise ValidationException({"reason": ["A reason is required for adjustments."]})
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.adjustment,
            amount=amount,
            enforce_floor=not allow_negative,
            description=f"Manual adjustment: {reason}",
            adjustment_reason=reason,
            changed_by=changed_by,
        )

    @staticmethod
    async def record_custom_policy_adjustment(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        previous_quota: Decimal,
        new_quota: Decimal,
        policy_id: uuid.UUID,
        policy_name: str,
        changed_by: Optional[str] = None,
    ) -> Optional[LeaveLedgerEntry]:
        """Record ``new_quota - previous_quota``; nothing when the quota is unchanged."""
        delta = _dec(new_quota) - _dec(previous_quota)
        if delta == 0:
            return None
        return await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.custom_adjustment,
            amount=delta,
            opening_balance=_dec(previous_quota),
            custom_policy_id=policy_id,
            description=f"Custom policy '{policy_name}' applied: quota {previous_quota} -> {new_quota}",
            details={"previous_quota": str(previous_quota), "new_quota": str(new_quota)},
            adjustment_reason="custom_policy_applied",
            changed_by=changed_by,
        )

    @staticmethod
    async def record_custom_policy_reversal(
        db: AsyncSession,
        *,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
        custom_quota: Decimal,
        fallback_quota: Decimal,
        policy_id: uuid.UUID,
        policy_name: str,
        changed_by: Optional[str] = None,
    ) -> Optional[LeaveLedgerEntry]:
        """Record ``fallback_quota - custom_quota`` when a policy stops covering an employee.

        The balance may go negative if usage exceeded the fallback quota; it
        is recorded as-is and logged.
        """
        delta = _dec(fallback_quota) - _dec(custom_quota)
        if delta == 0:
            return None
        entry = await LedgerService._append(
            db,
            company_id=company_id,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=TT.custom_adjustment,
            amount=delta,
            opening_balance=_dec(custom_quota),
            custom_policy_id=policy_id,
            description=f"Custom policy '{policy_name}' removed: quota {custom_quota} -> {fallback_quota}",
            details={"previous_quota": str(custom_quota), "new_quota": str(fallback_quota)},
            adjustment_reason="custom_policy_reversed",
            changed_by=changed_by,
        )
        if entry.balance_after < 0:
            logger.warning(
                "Policy %s reversal left %s/%s with negative balance %s",
                policy_id, employee_id, leave_type, entry.balance_after,
            )
        return entry

    @staticmethod
    async def initialize_employee_ledger(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        *,
        changed_by: Optional[str] = None,
    ) -> list[LeaveLedgerEntry]:
        """Write opening entries for every active leave type without a chain yet."""
        from hrleave.policies.service import PolicyResolver

        await EmployeeDirectory.get_employee(db, company_id, employee_id)
        created: list[LeaveLedgerEntry] = []
        for leave_type in await LeaveTypeService.list_leave_types(db, company_id):
            head = await LedgerService._lock_chain_head(db, employee_id, leave_type.code)
            if await LedgerService.get_latest_entry(db, employee_id, leave_type.code):
                continue
            opening = await PolicyResolver.resolve_opening_balance(
                db, company_id, employee_id, leave_type.code,
            )
            created.append(
                await LedgerService._insert(
                    db,
                    company_id=company_id,
                    employee_id=employee_id,
                    leave_type=leave_type.code,
                    sequence=(head.sequence if head is not None else 0) + 1,
                    transaction_type=TT.opening,
                    amount=opening,
                    balance_before=ZERO,
                    description="Opening balance",
                    changed_by=changed_by,
                )
            )
        return created

    # ─────────────────────────────────────────────────────────────────
    # History & reporting
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance_history(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        *,
        leave_type: Optional[str] = None,
        transaction_type: Optional[LedgerTransactionType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        year: Optional[int] = None,
        limit: int = DEFAULT_LEDGER_HISTORY,
    ) -> Sequence[LeaveLedgerEntry]:
        """Newest first."""
        query = select(LeaveLedgerEntry).where(
            LeaveLedgerEntry.company_id == company_id,
            LeaveLedgerEntry.employee_id == employee_id,
            LeaveLedgerEntry.is_deleted.is_(False),
        )
        if leave_type:
            query = query.where(LeaveLedgerEntry.leave_type == leave_type)
        if transaction_type:
            query = query.where(LeaveLedgerEntry.transaction_type == transaction_type)
        if start_date:
            query = query.where(
                LeaveLedgerEntry.transaction_date
                >= datetime.combine(start_date, time.min, tzinfo=timezone.utc)
            )
        if end_date:
            query = query.where(
                LeaveLedgerEntry.transaction_date
                < datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
            )
        if year:
            query = query.where(LeaveLedgerEntry.year == year)

        query = query.order_by(
            LeaveLedgerEntry.transaction_date.desc(),
            LeaveLedgerEntry.sequence.desc(),
        ).limit(min(max(limit, 1), MAX_LEDGER_HISTORY))
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def get_history_by_financial_year(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        financial_year: str,
    ) -> dict[str, list[LeaveLedgerEntry]]:
        """Entries of one financial year grouped by leave type, oldest first."""
        result = await db.execute(
            select(LeaveLedgerEntry)
            .where(
                LeaveLedgerEntry.company_id == company_id,
                LeaveLedgerEntry.employee_id == employee_id,
                LeaveLedgerEntry.financial_year == financial_year,
                LeaveLedgerEntry.is_deleted.is_(False),
            )
            .order_by(LeaveLedgerEntry.leave_type, LeaveLedgerEntry.sequence)
        )
        grouped: dict[str, list[LeaveLedgerEntry]] = defaultdict(list)
        for entry in result.scalars().all():
            grouped[entry.leave_type].append(entry)
        return dict(grouped)

    @staticmethod
    def calculate_summary(entries: Iterable[LeaveLedgerEntry]) -> dict[str, dict[str, Any]]:
        """Aggregate totals per leave type; ``current_balance`` comes from the newest entry."""
        summary: dict[str, dict[str, Any]] = {}
        latest_seq: dict[str, int] = {}
        for entry in entries:
            item = summary.setdefault(entry.leave_type, {
                "total_allocated": ZERO,
                "total_used": ZERO,
                "total_restored": ZERO,
                "total_encashed": ZERO,
                "current_balance": ZERO,
                "transaction_count": 0,
            })
            amount = _dec(entry.amount)
            if entry.transaction_type in (TT.allocated, TT.opening, TT.carry_forward):
                item["total_allocated"] += amount
            elif entry.transaction_type == TT.used:
                item["total_used"] += -amount
            elif entry.transaction_type == TT.restored:
                item["total_restored"] += amount
            elif entry.transaction_type == TT.encashed:
                item["total_encashed"] += -amount
            item["transaction_count"] += 1
            if entry.sequence > latest_seq.get(entry.leave_type, 0):
                latest_seq[entry.leave_type] = entry.sequence
                item["current_balance"] = _dec(entry.balance_after)
        return summary

    @staticmethod
    async def get_balance_summary(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        *,
        year: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Per active leave type: effective quota, current balance and yearly activity."""
        from hrleave.policies.service import PolicyResolver

        await EmployeeDirectory.get_employee(db, company_id, employee_id)
        year = year or _now().year

        result = await db.execute(
            select(
                LeaveLedgerEntry.leave_type,
                LeaveLedgerEntry.transaction_type,
                func.count(LeaveLedgerEntry.id),
                func.sum(LeaveLedgerEntry.amount),
            )
            .where(
                LeaveLedgerEntry.employee_id == employee_id,
                LeaveLedgerEntry.year == year,
                LeaveLedgerEntry.is_deleted.is_(False),
                LeaveLedgerEntry.transaction_type.in_([TT.allocated, TT.used, TT.restored]),
            )
            .group_by(LeaveLedgerEntry.leave_type, LeaveLedgerEntry.transaction_type)
        )
        yearly: dict[str, dict[str, Any]] = defaultdict(dict)
        for code, tx_type, count, total in result.all():
            yearly[code][tx_type.value] = {"count": count, "days": abs(_dec(total))}

        summary = []
        for leave_type in await LeaveTypeService.list_leave_types(db, company_id):
            quota = await PolicyResolver.resolve_quota(db, company_id, employee_id, leave_type.code)
            latest = await LedgerService.get_latest_entry(db, employee_id, leave_type.code)
            if latest is not None:
                balance = _dec(latest.balance_after)
            else:
                balance = await PolicyResolver.resolve_opening_balance(
                    db, company_id, employee_id, leave_type.code,
                )
            stats = yearly.get(leave_type.code, {})
            summary.append({
                "leave_type": leave_type.code,
                "name": leave_type.name,
                "is_paid": leave_type.is_paid,
                "quota": quota.quota,
                "quota_source": quota.source,
                "policy_id": quota.policy_id,
                "policy_name": quota.policy_name,
                "current_balance": balance,
                "has_ledger": latest is not None,
                "last_transaction_date": latest.transaction_date if latest else None,
                "year": year,
                "allocated": stats.get("allocated", {"count": 0, "days": ZERO}),
                "used": stats.get("used", {"count": 0, "days": ZERO}),
                "restored": stats.get("restored", {"count": 0, "days": ZERO}),
            })
        return summary

    @staticmethod
    async def get_encashed_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> Decimal:
        """Days encashed for the key in calendar *year*."""
        result = await db.execute(
            select(func.coalesce(func.sum(LeaveLedgerEntry.amount), 0)).where(
                LeaveLedgerEntry.employee_id == employee_id,
                LeaveLedgerEntry.leave_type == leave_type,
                LeaveLedgerEntry.transaction_type == TT.encashed,
                LeaveLedgerEntry.year == year,
                LeaveLedgerEntry.is_deleted.is_(False),
            )
        )
        return abs(_dec(result.scalar()))

    @staticmethod
    def export_rows(entries: Iterable[LeaveLedgerEntry]) -> list[dict[str, Any]]:
        return [
            {
                "Date": entry.transaction_date.strftime("%Y-%m-%d"),
                "Leave Type": entry.leave_type,
                "Transaction Type": entry.transaction_type.value,
                "Amount": str(entry.amount),
                "Balance Before": str(entry.balance_before),
                "Balance After": str(entry.balance_after),
                "Description": entry.description or "",
                "Leave ID": str(entry.leave_request_id) if entry.leave_request_id else "",
            }
            for entry in entries
        ]

    # ─────────────────────────────────────────────────────────────────
    # Integrity
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def verify_chain(entries: Iterable[LeaveLedgerEntry]) -> list[str]:
        """Return chain violations for entries of one or more keys (empty when sound)."""
        problems: list[str] = []
        by_key: dict[tuple, list[LeaveLedgerEntry]] = defaultdict(list)
        for entry in entries:
            if not entry.is_deleted:
                by_key[(entry.employee_id, entry.leave_type)].append(entry)

        for (employee_id, leave_type), chain in by_key.items():
            chain.sort(key=lambda e: e.sequence)
            previous: Optional[LeaveLedgerEntry] = None
            for entry in chain:
                if _dec(entry.balance_before) + _dec(entry.amount) != _dec(entry.balance_after):
                    problems.append(
                        f"{employee_id}/{leave_type}#{entry.sequence}: "
                        f"{entry.balance_before} + {entry.amount} != {entry.balance_after}"
                    )
                if previous is not None and _dec(previous.balance_after) != _dec(entry.balance_before):
                    problems.append(
                        f"{employee_id}/{leave_type}#{entry.sequence}: opens at "
                        f"{entry.balance_before}, previous closed at {previous.balance_after}"
                    )
                previous = entry
        return problems

    @staticmethod
    async def get_chain(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: Optional[str] = None,
    ) -> Sequence[LeaveLedgerEntry]:
        query = select(LeaveLedgerEntry).where(LeaveLedgerEntry.employee_id == employee_id)
        if leave_type:
            query = query.where(LeaveLedgerEntry.leave_type == leave_type)
        result = await db.execute(
            query.order_by(LeaveLedgerEntry.leave_type, LeaveLedgerEntry.sequence)
        )
        return result.scalars().all()

    @staticmethod
    async def reconcile_projection(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
    ) -> list[dict[str, Any]]:
        """Align the projection's ``balance`` with each chain's latest entry."""
        await EmployeeDirectory.get_employee(db, company_id, employee_id)
        result = await db.execute(
            select(LeaveLedgerEntry.leave_type)
            .where(LeaveLedgerEntry.employee_id == employee_id)
            .distinct()
        )
        changes = []
        for leave_type in result.scalars().all():
            latest = await LedgerService.get_latest_entry(db, employee_id, leave_type)
            if latest is None:
                continue
            projection = await EmployeeDirectory.get_projection(db, employee_id, leave_type)
            if projection is None:
                projection = EmployeeLeaveBalance(
                    company_id=company_id,
                    employee_id=employee_id,
                    leave_type=leave_type,
                    total=_dec(latest.balance_after),
                    used=ZERO,
                    balance=ZERO,
                )
                db.add(projection)
            if _dec(projection.balance) != _dec(latest.balance_after):
                changes.append({
                    "leave_type": leave_type,
                    "projected": _dec(projection.balance),
                    "ledger": _dec(latest.balance_after),
                })
                logger.info(
                    "Reconciled %s/%s projection %s -> %s",
                    employee_id, leave_type, projection.balance, latest.balance_after,
                )
                projection.balance = _dec(latest.balance_after)
        await db.flush()
        return changes
