"""Leave router — leave types, rule tables, balances and the request lifecycle.

All endpoints require authentication; transitions check capabilities in
the service layer so direct callers get the same rules.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.auth.dependencies import get_current_actor, require_capability
from hrleave.common.audit import create_audit_entry
from hrleave.common.constants import Capability, LeaveStatus
from hrleave.common.pagination import PaginationParams
from hrleave.database import get_db
from hrleave.dependencies import get_leave_rules
from hrleave.leave.catalog import LeaveTypeService
from hrleave.leave.rules import LeaveRules, save_tenant_rules
from hrleave.leave.schemas import (
    LeaveApproveRequest,
    LeaveCancelRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestList,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
)
from hrleave.leave.service import LeaveRequestService
from hrleave.policies.schemas import EmployeeBalanceOut

router = APIRouter(prefix="", tags=["leave"])


# ── Leave types ─────────────────────────────────────────────────────

@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_inactive: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.list_leave_types(
        db, actor.company_id, include_inactive=include_inactive,
    )


@router.post("/types", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    actor: Actor = Depends(require_capability(Capability.manage_leave_types)),
    db: AsyncSession = Depends(get_db),
):
    leave_type = await LeaveTypeService.create_leave_type(
        db, actor.company_id, **body.model_dump(),
    )
    await create_audit_entry(
        db,
        company_id=actor.company_id,
        action="create",
        entity_type="leave_type",
        entity_id=leave_type.id,
        actor_id=actor.employee_id,
        actor_user_id=actor.user_id,
        new_values=body.model_dump(),
    )
    return leave_type


# ── Rule tables ─────────────────────────────────────────────────────

@router.get("/rules", response_model=LeaveRules)
async def get_rules(
    actor: Actor = Depends(require_capability(Capability.manage_policies)),
    rules: LeaveRules = Depends(get_leave_rules),
):
    """Carry-forward and encashment rules in force for the tenant."""
    return rules


@router.put("/rules", response_model=LeaveRules)
async def put_rules(
    body: LeaveRules,
    actor: Actor = Depends(require_capability(Capability.manage_policies)),
    db: AsyncSession = Depends(get_db),
):
    """Store a tenant override; entries replace the defaults per leave type."""
    return await save_tenant_rules(db, actor.company_id, body, updated_by=actor.user_id)


# ── Balances ────────────────────────────────────────────────────────

@router.get("/balances", response_model=list[EmployeeBalanceOut])
async def get_balances(
    employee_id: Optional[uuid.UUID] = Query(None, description="Defaults to the caller"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.get_balances(db, actor, employee_id)


# ── Requests ────────────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
async def create_request(
    body: LeaveRequestCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """File a leave request; routed to the reporting manager or the HR pool."""
    return await LeaveRequestService.create_leave(db, actor, body)


@router.get("/requests", response_model=LeaveRequestList)
async def list_requests(
    scope: str = Query("my", description="my | team | hr-pool | all"),
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[str] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.list_leaves(
        db,
        actor,
        pagination,
        scope=scope,
        status=status,
        leave_type=leave_type,
        employee_id=employee_id,
        from_date=from_date,
        to_date=to_date,
    )


@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.get_leave(db, actor, request_id)


@router.put("/requests/{request_id}", response_model=LeaveRequestOut)
async def update_request(
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Edit a pending request."""
    return await LeaveRequestService.update_leave(db, actor, request_id, body)


@router.delete("/requests/{request_id}", status_code=204)
async def delete_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await LeaveRequestService.delete_leave(db, actor, request_id)
    return Response(status_code=204)


# ── Transitions ─────────────────────────────────────────────────────

@router.put("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_request(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending request and debit the ledger."""
    return await LeaveRequestService.approve_leave(db, actor, request_id, body.comments)


@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_request(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.reject_leave(db, actor, request_id, body.reason)


@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_request(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a request; approved leave is credited back to the ledger."""
    return await LeaveRequestService.cancel_leave(db, actor, request_id, body.reason)
