"""Custom policy router — CRUD plus effective-quota lookups.

Every create / update / delete writes the per-employee quota deltas to the
ledger inside the same request transaction.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.auth.dependencies import get_current_actor, require_capability
from hrleave.common.constants import Capability
from hrleave.database import get_db
from hrleave.policies.schemas import (
    CustomPolicyCreate,
    CustomPolicyOut,
    CustomPolicyUpdate,
    EmployeeBalanceOut,
    EmployeePolicies,
    QuotaResolution,
)
from hrleave.policies.service import CustomPolicyService, PolicyResolver

router = APIRouter(prefix="", tags=["policies"])


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=list[CustomPolicyOut])
async def list_policies(
    leave_type: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    actor: Actor = Depends(require_capability(Capability.manage_policies)),
    db: AsyncSession = Depends(get_db),
):
    return await CustomPolicyService.list_policies(
        db, actor.company_id, leave_type=leave_type, include_inactive=include_inactive,
    )


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=CustomPolicyOut, status_code=201)
async def create_policy(
    body: CustomPolicyCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Create a policy; covered employees get a ``custom_adjustment`` entry."""
    return await CustomPolicyService.create_policy(db, actor, body)


# ── GET /employees ──────────────────────────────────────────────────
# Registered before /{policy_id} so "employees" is not parsed as a UUID.

@router.get("/employees", response_model=list[EmployeePolicies])
async def employees_with_policies(
    actor: Actor = Depends(require_capability(Capability.manage_policies)),
    db: AsyncSession = Depends(get_db),
):
    return await CustomPolicyService.get_employees_with_custom_policies(db, actor.company_id)


@router.get("/employees/{employee_id}", response_model=list[CustomPolicyOut])
async def employee_policies(
    employee_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await CustomPolicyService.get_employee_policies(db, actor.company_id, employee_id)


@router.get("/employees/{employee_id}/quota/{leave_type}", response_model=QuotaResolution)
async def resolve_quota(
    employee_id: uuid.UUID,
    leave_type: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Effective annual quota: first active custom policy, else the leave type default."""
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await PolicyResolver.resolve_quota(db, actor.company_id, employee_id, leave_type.lower())


@router.get("/employees/{employee_id}/balance/{leave_type}", response_model=EmployeeBalanceOut)
async def resolve_balance(
    employee_id: uuid.UUID,
    leave_type: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    actor.require_self_or(Capability.view_any_balance, employee_id)
    return await PolicyResolver.resolve_employee_balance(
        db, actor.company_id, employee_id, leave_type.lower(),
    )


# ── /{policy_id} ────────────────────────────────────────────────────

@router.get("/{policy_id}", response_model=CustomPolicyOut)
async def get_policy(
    policy_id: uuid.UUID,
    actor: Actor = Depends(require_capability(Capability.manage_policies)),
    db: AsyncSession = Depends(get_db),
):
    return await CustomPolicyService.get_policy(db, actor.company_id, policy_id)


@router.put("/{policy_id}", response_model=CustomPolicyOut)
async def update_policy(
    policy_id: uuid.UUID,
    body: CustomPolicyUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await CustomPolicyService.update_policy(db, actor, policy_id, body)


@router.delete("/{policy_id}", response_model=CustomPolicyOut)
async def delete_policy(
    policy_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete; covered employees revert to their next effective quota."""
    return await CustomPolicyService.delete_policy(db, actor, policy_id)
