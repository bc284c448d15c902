"""Carry-forward router — year-end preview, execution and reporting.

The tenant-wide run opens one transaction per employee through the
session factory, so it does not use the request session for writes.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrleave.auth.actor import Actor
from hrleave.auth.dependencies import get_current_actor, require_capability
from hrleave.carry_forward.schemas import (
    CarryForwardExecution,
    CarryForwardHistoryItem,
    CarryForwardPreview,
    CarryForwardRequest,
    CarryForwardSummary,
)
from hrleave.carry_forward.service import CarryForwardEngine
from hrleave.common.constants import Capability
from hrleave.common.rate_limit import BATCH_RATE_LIMIT, limiter
from hrleave.common.schemas import BatchReport
from hrleave.database import get_db, get_session_factory
from hrleave.dependencies import get_leave_rules
from hrleave.leave.rules import LeaveRules

router = APIRouter(prefix="", tags=["carry-forward"])


# ── POST /run — every active employee ───────────────────────────────

@router.post("/run", response_model=BatchReport)
@limiter.limit(BATCH_RATE_LIMIT)
async def run_for_company(
    request: Request,
    body: CarryForwardRequest,
    actor: Actor = Depends(require_capability(Capability.run_carry_forward)),
    rules: LeaveRules = Depends(get_leave_rules),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Close out ``from_year`` for the whole tenant; failures are reported per employee."""
    return await CarryForwardEngine(rules).execute_for_company(
        session_factory, actor, body.from_year,
    )


# ── GET /summary ────────────────────────────────────────────────────

@router.get("/summary", response_model=CarryForwardSummary)
async def summary(
    financial_year: str = Query(..., description="Target year, e.g. FY2025-2026"),
    actor: Actor = Depends(require_capability(Capability.run_carry_forward)),
    db: AsyncSession = Depends(get_db),
):
    return await CarryForwardEngine.get_summary(db, actor.company_id, financial_year)


# ── GET /{employee_id}/preview ──────────────────────────────────────

@router.get("/{employee_id}/preview", response_model=CarryForwardPreview)
async def preview(
    employee_id: uuid.UUID,
    from_year: int = Query(..., ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    rules: LeaveRules = Depends(get_leave_rules),
    db: AsyncSession = Depends(get_db),
):
    """What would carry into ``from_year + 1``; writes nothing."""
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await CarryForwardEngine(rules).preview(db, actor.company_id, employee_id, from_year)


# ── POST /{employee_id}/execute ─────────────────────────────────────

@router.post("/{employee_id}/execute", response_model=CarryForwardExecution)
async def execute(
    employee_id: uuid.UUID,
    body: CarryForwardRequest,
    actor: Actor = Depends(get_current_actor),
    rules: LeaveRules = Depends(get_leave_rules),
    db: AsyncSession = Depends(get_db),
):
    return await CarryForwardEngine(rules).execute(db, actor, employee_id, body.from_year)


# ── GET /{employee_id}/history ──────────────────────────────────────

@router.get("/{employee_id}/history", response_model=list[CarryForwardHistoryItem])
async def history(
    employee_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await CarryForwardEngine.get_history(db, actor.company_id, employee_id)
