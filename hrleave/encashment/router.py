"""Encashment router — eligibility preview, payout and reports."""

import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrleave.auth.actor import Actor
from hrleave.auth.dependencies import get_current_actor, require_capability
from hrleave.common.constants import Capability
from hrleave.common.rate_limit import BATCH_RATE_LIMIT, limiter
from hrleave.common.schemas import BatchReport
from hrleave.database import get_db, get_session_factory
from hrleave.dependencies import get_leave_rules
from hrleave.encashment.schemas import (
    CompanyEncashmentRequest,
    EncashmentCalculation,
    EncashmentCompanySummary,
    EncashmentHistory,
    EncashmentRequest,
    EncashmentResult,
)
from hrleave.encashment.service import EncashmentEngine
from hrleave.leave.rules import LeaveRules

router = APIRouter(prefix="", tags=["encashment"])


# ── POST /run — every active employee ───────────────────────────────

@router.post("/run", response_model=BatchReport)
@limiter.limit(BATCH_RATE_LIMIT)
async def run_for_company(
    request: Request,
    body: CompanyEncashmentRequest,
    actor: Actor = Depends(require_capability(Capability.run_encashment)),
    rules: LeaveRules = Depends(get_leave_rules),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Encash for the tenant; ineligible employees count as skipped."""
    return await EncashmentEngine(rules).execute_for_company(
        session_factory, actor, body.leave_type, body.days, body.reason,
    )


# ── GET /summary ────────────────────────────────────────────────────

@router.get("/summary", response_model=EncashmentCompanySummary)
async def company_summary(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(require_capability(Capability.run_encashment)),
    db: AsyncSession = Depends(get_db),
):
    return await EncashmentEngine.get_company_summary(db, actor.company_id, year)


# ── GET /{employee_id}/calculate ────────────────────────────────────

@router.get("/{employee_id}/calculate", response_model=EncashmentCalculation)
async def calculate(
    employee_id: uuid.UUID,
    leave_type: str = Query(..., min_length=1),
    days: Optional[Decimal] = Query(None, gt=0, description="Defaults to the most allowed"),
    actor: Actor = Depends(get_current_actor),
    rules: LeaveRules = Depends(get_leave_rules),
    db: AsyncSession = Depends(get_db),
):
    """Eligibility and payout for a prospective encashment; writes nothing."""
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await EncashmentEngine(rules).calculate(
        db, actor.company_id, employee_id, leave_type.lower(), days,
    )


# ── POST /{employee_id} ─────────────────────────────────────────────

@router.post("/{employee_id}", response_model=EncashmentResult, status_code=201)
async def encash(
    employee_id: uuid.UUID,
    body: EncashmentRequest,
    actor: Actor = Depends(get_current_actor),
    rules: LeaveRules = Depends(get_leave_rules),
    db: AsyncSession = Depends(get_db),
):
    return await EncashmentEngine(rules).execute(
        db, actor, employee_id, body.leave_type, body.days, body.reason,
    )


# ── GET /{employee_id}/history ──────────────────────────────────────

@router.get("/{employee_id}/history", response_model=EncashmentHistory)
async def history(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await EncashmentEngine.get_history(db, actor.company_id, employee_id, year)
