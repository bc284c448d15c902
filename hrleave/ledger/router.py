"""Ledger router — balance history, summaries, export and HR corrections.

Employees read their own ledger; reading anyone else's needs
``view_any_balance`` and writes need ``manage_ledger``.
"""

import csv
import io
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.auth.dependencies import get_current_actor, require_capability
from hrleave.common.audit import create_audit_entry
from hrleave.common.constants import (
    DEFAULT_LEDGER_HISTORY,
    MAX_LEDGER_HISTORY,
    Capability,
    LedgerTransactionType,
)
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.database import get_db
from hrleave.ledger.schemas import (
    BalanceSummaryOut,
    ChainVerification,
    LedgerAdjustmentCreate,
    LedgerEntryOut,
    LedgerHistoryOut,
    LedgerTypeSummary,
    ProjectionChange,
)
from hrleave.ledger.service import EXPORT_COLUMNS, LedgerService

router = APIRouter(prefix="", tags=["ledger"])


# ── GET /{employee_id}/history ──────────────────────────────────────

@router.get("/{employee_id}/history", response_model=LedgerHistoryOut)
async def balance_history(
    employee_id: uuid.UUID,
    leave_type: Optional[str] = Query(None),
    transaction_type: Optional[LedgerTransactionType] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    year: Optional[int] = Query(None),
    limit: int = Query(DEFAULT_LEDGER_HISTORY, ge=1, le=MAX_LEDGER_HISTORY),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Ledger entries newest first, with per-leave-type totals."""
    actor.require_self_or(Capability.view_any_balance, employee_id)
    entries = await LedgerService.get_balance_history(
        db,
        actor.company_id,
        employee_id,
        leave_type=leave_type,
        transaction_type=transaction_type,
        start_date=start_date,
        end_date=end_date,
        year=year,
        limit=limit,
    )
    summary = LedgerService.calculate_summary(entries)
    return LedgerHistoryOut(
        entries=[LedgerEntryOut.model_validate(e) for e in entries],
        summary={k: LedgerTypeSummary(**v) for k, v in summary.items()},
    )


# ── GET /{employee_id}/financial-year/{financial_year} ──────────────

@router.get(
    "/{employee_id}/financial-year/{financial_year}",
    response_model=dict[str, list[LedgerEntryOut]],
)
async def financial_year_history(
    employee_id: uuid.UUID,
    financial_year: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Entries of one financial year (e.g. ``FY2024-2025``) grouped by leave type."""
    actor.require_self_or(Capability.view_any_balance, employee_id)
    grouped = await LedgerService.get_history_by_financial_year(
        db, actor.company_id, employee_id, financial_year,
    )
    return {
        code: [LedgerEntryOut.model_validate(e) for e in entries]
        for code, entries in grouped.items()
    }


# ── GET /{employee_id}/summary ──────────────────────────────────────

@router.get("/{employee_id}/summary", response_model=list[BalanceSummaryOut])
async def balance_summary(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await LedgerService.get_balance_summary(db, actor.company_id, employee_id, year=year)


# ── GET /{employee_id}/export ───────────────────────────────────────

@router.get("/{employee_id}/export")
async def export_history(
    employee_id: uuid.UUID,
    leave_type: Optional[str] = Query(None),
    year: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """CSV download of the ledger."""
    actor.require_self_or(Capability.view_any_balance, employee_id)
    entries = await LedgerService.get_balance_history(
        db, actor.company_id, employee_id,
        leave_type=leave_type, year=year, limit=MAX_LEDGER_HISTORY,
    )
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(LedgerService.export_rows(entries))
    buffer.seek(0)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="leave-ledger-{employee_id}.csv"',
        },
    )


# ── POST /{employee_id}/initialize ──────────────────────────────────

@router.post("/{employee_id}/initialize", response_model=list[LedgerEntryOut])
async def initialize_ledger(
    employee_id: uuid.UUID,
    actor: Actor = Depends(require_capability(Capability.manage_ledger)),
    db: AsyncSession = Depends(get_db),
):
    """Write opening entries for leave types that have no ledger yet."""
    return await LedgerService.initialize_employee_ledger(
        db, actor.company_id, employee_id, changed_by=actor.user_id,
    )


# ── POST /{employee_id}/adjustments ─────────────────────────────────

@router.post("/{employee_id}/adjustments", response_model=LedgerEntryOut, status_code=201)
async def adjust_balance(
    employee_id: uuid.UUID,
    body: LedgerAdjustmentCreate,
    actor: Actor = Depends(require_capability(Capability.manage_ledger)),
    db: AsyncSession = Depends(get_db),
):
    """Manual signed correction with a mandatory reason."""
    await EmployeeDirectory.get_employee(db, actor.company_id, employee_id)
    entry = await LedgerService.record_adjustment(
        db,
        company_id=actor.company_id,
        employee_id=employee_id,
        leave_type=body.leave_type.lower(),
        amount=body.amount,
        reason=body.reason,
        changed_by=actor.user_id,
        allow_negative=body.allow_negative,
    )
    await create_audit_entry(
        db,
        company_id=actor.company_id,
        action="adjust",
        entity_type="leave_ledger",
        entity_id=entry.id,
        actor_id=actor.employee_id,
        actor_user_id=actor.user_id,
        new_values={
            "employee_id": employee_id,
            "leave_type": entry.leave_type,
            "amount": entry.amount,
            "reason": body.reason,
        },
    )
    return entry


# ── POST /{employee_id}/reconcile ───────────────────────────────────

@router.post("/{employee_id}/reconcile", response_model=list[ProjectionChange])
async def reconcile(
    employee_id: uuid.UUID,
    actor: Actor = Depends(require_capability(Capability.manage_ledger)),
    db: AsyncSession = Depends(get_db),
):
    """Realign the balance projection with the ledger."""
    return await LedgerService.reconcile_projection(db, actor.company_id, employee_id)


# ── GET /{employee_id}/verify ───────────────────────────────────────

@router.get("/{employee_id}/verify", response_model=ChainVerification)
async def verify(
    employee_id: uuid.UUID,
    actor: Actor = Depends(require_capability(Capability.manage_ledger)),
    db: AsyncSession = Depends(get_db),
):
    await EmployeeDirectory.get_employee(db, actor.company_id, employee_id)
    chain = await LedgerService.get_chain(db, employee_id)
    problems = LedgerService.verify_chain(chain)
    return ChainVerification(
        employee_id=employee_id,
        valid=not problems,
        entries_checked=len(chain),
        problems=problems,
    )
