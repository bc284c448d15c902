"""Policy resolver and custom policy management.

Quota resolution never rewrites the ledger: creating, editing or removing
a custom policy records only the per-employee quota delta as a
``custom_adjustment`` entry.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.common.audit import create_audit_entry
from hrleave.common.constants import Capability, PolicySource
from hrleave.common.exceptions import NotFoundException, ValidationException
from hrleave.core_hr.models import Employee
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.leave.catalog import LeaveTypeService
from hrleave.ledger.service import LedgerService
from hrleave.notifications.service import notify_balance_changed
from hrleave.policies.models import CustomLeavePolicy
from hrleave.policies.schemas import (
    CustomPolicyCreate,
    CustomPolicyOut,
    CustomPolicyUpdate,
    EmployeeBalanceOut,
    EmployeePolicies,
    QuotaResolution,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# PolicyResolver
# ═════════════════════════════════════════════════════════════════════


class PolicyResolver:
    """Effective quota and balance for an (employee, leave type)."""

    @staticmethod
    async def find_active_policy(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> Optional[CustomLeavePolicy]:
        """First active policy covering the employee, oldest first."""
        result = await db.execute(
            select(CustomLeavePolicy)
            .where(
                CustomLeavePolicy.company_id == company_id,
                CustomLeavePolicy.leave_type == leave_type,
                CustomLeavePolicy.is_active.is_(True),
                CustomLeavePolicy.is_deleted.is_(False),
            )
            .order_by(CustomLeavePolicy.created_at, CustomLeavePolicy.id)
        )
        for policy in result.scalars().all():
            if policy.covers(employee_id):
                return policy
        return None

    @staticmethod
    async def resolve_quota(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> QuotaResolution:
        policy = await PolicyResolver.find_active_policy(db, company_id, employee_id, leave_type)
        if policy is not None:
            return QuotaResolution(
                leave_type=leave_type,
                quota=policy.annual_quota,
                source=PolicySource.custom,
                policy_id=policy.id,
                policy_name=policy.name,
            )
        catalog_entry = await LeaveTypeService.get_by_code(db, company_id, leave_type)
        return QuotaResolution(
            leave_type=leave_type,
            quota=catalog_entry.default_quota,
            source=PolicySource.default,
        )

    @staticmethod
    async def resolve_opening_balance(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> Decimal:
        """Balance a chain opens at: the projection's balance if one exists, else the quota."""
        projection = await EmployeeDirectory.get_projection(db, employee_id, leave_type)
        if projection is not None:
            return Decimal(str(projection.balance))
        return (await PolicyResolver.resolve_quota(db, company_id, employee_id, leave_type)).quota

    @staticmethod
    async def resolve_employee_balance(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> EmployeeBalanceOut:
        """Quota plus current balance; the ledger wins over the projection."""
        quota = await PolicyResolver.resolve_quota(db, company_id, employee_id, leave_type)
        projection = await EmployeeDirectory.get_projection(db, employee_id, leave_type)
        latest = await LedgerService.get_latest_entry(db, employee_id, leave_type)

        if latest is not None:
            balance, source = Decimal(str(latest.balance_after)), "ledger"
        elif projection is not None:
            balance, source = Decimal(str(projection.balance)), "projection"
        else:
            balance, source = quota.quota, "quota"

        has_custom = quota.source == PolicySource.custom
        if has_custom or projection is None:
            total = quota.quota
        else:
            total = Decimal(str(projection.total))

        return EmployeeBalanceOut(
            employee_id=employee_id,
            leave_type=leave_type,
            total=total,
            used=Decimal(str(projection.used)) if projection is not None else ZERO,
            balance=balance,
            has_custom_policy=has_custom,
            policy_id=quota.policy_id,
            policy_name=quota.policy_name,
            balance_source=source,
        )


# ═════════════════════════════════════════════════════════════════════
# CustomPolicyService
# ═════════════════════════════════════════════════════════════════════


class CustomPolicyService:
    """HR/admin management of custom policies, each change mirrored in the ledger."""

    @staticmethod
    def _to_out(policy: CustomLeavePolicy) -> CustomPolicyOut:
        return CustomPolicyOut.model_validate(policy)

    @staticmethod
    async def _ensure_employees(
        db: AsyncSession,
        company_id: str,
        employee_ids: Iterable[uuid.UUID],
    ) -> None:
        wanted = set(employee_ids)
        result = await db.execute(
            select(Employee.id).where(
                Employee.company_id == company_id,
                Employee.id.in_(wanted),
                Employee.is_deleted.is_(False),
            )
        )
        missing = wanted - set(result.scalars().all())
        if missing:
            raise ValidationException(
                {"employee_ids": [f"Unknown employee '{e}'." for e in sorted(map(str, missing))]},
                code="unknown-employee",
            )

    @staticmethod
    async def _snapshot(
        db: AsyncSession,
        company_id: str,
        leave_type: str,
        employee_ids: Iterable[uuid.UUID],
    ) -> dict[uuid.UUID, QuotaResolution]:
        return {
            employee_id: await PolicyResolver.resolve_quota(db, company_id, employee_id, leave_type)
            for employee_id in employee_ids
        }

    @staticmethod
    async def _record_quota_changes(
        db: AsyncSession,
        actor: Actor,
        policy: CustomLeavePolicy,
        before: dict[uuid.UUID, QuotaResolution],
        after: dict[uuid.UUID, QuotaResolution],
    ) -> int:
        """Write one custom_adjustment per employee whose effective quota moved."""
        written = 0
        for employee_id, old in before.items():
            new = after[employee_id]
            if old.quota == new.quota:
                continue
            if new.source == PolicySource.custom:
                entry = await LedgerService.record_custom_policy_adjustment(
                    db,
                    company_id=actor.company_id,
                    employee_id=employee_id,
                    leave_type=policy.leave_type,
                    previous_quota=old.quota,
                    new_quota=new.quota,
                    policy_id=new.policy_id or policy.id,
                    policy_name=new.policy_name or policy.name,
                    changed_by=actor.user_id,
                )
            else:
                entry = await LedgerService.record_custom_policy_reversal(
                    db,
                    company_id=actor.company_id,
                    employee_id=employee_id,
                    leave_type=policy.leave_type,
                    custom_quota=old.quota,
                    fallback_quota=new.quota,
                    policy_id=policy.id,
                    policy_name=policy.name,
                    changed_by=actor.user_id,
                )
            if entry is not None:
                written += 1
                await notify_balance_changed(
                    db,
                    company_id=actor.company_id,
                    employee_id=employee_id,
                    leave_type=policy.leave_type,
                    amount=entry.amount,
                    balance=entry.balance_after,
                    reason=f"custom policy '{policy.name}'",
                )
        return written

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_policy_model(
        db: AsyncSession,
        company_id: str,
        policy_id: uuid.UUID,
    ) -> CustomLeavePolicy:
        result = await db.execute(
            select(CustomLeavePolicy).where(
                CustomLeavePolicy.id == policy_id,
                CustomLeavePolicy.company_id == company_id,
                CustomLeavePolicy.is_deleted.is_(False),
            )
        )
        policy = result.scalars().first()
        if policy is None:
            raise NotFoundException("CustomPolicy", policy_id)
        return policy

    @staticmethod
    async def get_policy(
        db: AsyncSession,
        company_id: str,
        policy_id: uuid.UUID,
    ) -> CustomPolicyOut:
        policy = await CustomPolicyService.get_policy_model(db, company_id, policy_id)
        return CustomPolicyService._to_out(policy)

    @staticmethod
    async def list_policies(
        db: AsyncSession,
        company_id: str,
        *,
        leave_type: Optional[str] = None,
        include_inactive: bool = False,
    ) -> list[CustomPolicyOut]:
        query = select(CustomLeavePolicy).where(
            CustomLeavePolicy.company_id == company_id,
            CustomLeavePolicy.is_deleted.is_(False),
        )
        if leave_type:
            query = query.where(CustomLeavePolicy.leave_type == leave_type)
        if not include_inactive:
            query = query.where(CustomLeavePolicy.is_active.is_(True))
        result = await db.execute(query.order_by(CustomLeavePolicy.created_at))
        return [CustomPolicyService._to_out(p) for p in result.scalars().all()]

    @staticmethod
    async def get_employee_policies(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
    ) -> list[CustomPolicyOut]:
        policies = await CustomPolicyService.list_policies(db, company_id)
        return [p for p in policies if str(employee_id) in p.employee_ids]

    @staticmethod
    async def get_employees_with_custom_policies(
        db: AsyncSession,
        company_id: str,
    ) -> list[EmployeePolicies]:
        grouped: dict[str, list[CustomPolicyOut]] = defaultdict(list)
        for policy in await CustomPolicyService.list_policies(db, company_id):
            for employee_id in policy.employee_ids:
                grouped[employee_id].append(policy)
        return [
            EmployeePolicies(employee_id=uuid.UUID(employee_id), policies=policies)
            for employee_id, policies in grouped.items()
        ]

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_policy(
        db: AsyncSession,
        actor: Actor,
        data: CustomPolicyCreate,
    ) -> CustomPolicyOut:
        actor.require(Capability.manage_policies)
        leave_type = await LeaveTypeService.get_leave_type(db, actor.company_id, data.leave_type_id)
        await CustomPolicyService._ensure_employees(db, actor.company_id, data.employee_ids)

        before = await CustomPolicyService._snapshot(
            db, actor.company_id, leave_type.code, data.employee_ids,
        )
        policy = CustomLeavePolicy(
            company_id=actor.company_id,
            name=data.name,
            leave_type_id=leave_type.id,
            leave_type=leave_type.code,
            annual_quota=data.annual_quota,
            employee_ids=[str(e) for e in data.employee_ids],
            settings=data.settings.model_dump(mode="json"),
            created_by=actor.user_id,
            updated_by=actor.user_id,
        )
        db.add(policy)
        await db.flush()

        after = await CustomPolicyService._snapshot(
            db, actor.company_id, leave_type.code, data.employee_ids,
        )
        written = await CustomPolicyService._record_quota_changes(db, actor, policy, before, after)

        await create_audit_entry(
            db,
            company_id=actor.company_id,
            action="create",
            entity_type="custom_policy",
            entity_id=policy.id,
            actor_id=actor.employee_id,
            actor_user_id=actor.user_id,
            new_values={
                "name": policy.name,
                "leave_type": policy.leave_type,
                "annual_quota": policy.annual_quota,
                "employee_ids": policy.employee_ids,
            },
        )
        logger.info(
            "Custom policy %s created for %s (%d ledger adjustments)",
            policy.id, policy.leave_type, written,
        )
        return CustomPolicyService._to_out(policy)

    @staticmethod
    async def update_policy(
        db: AsyncSession,
        actor: Actor,
        policy_id: uuid.UUID,
        data: CustomPolicyUpdate,
    ) -> CustomPolicyOut:
        actor.require(Capability.manage_policies)
        policy = await CustomPolicyService.get_policy_model(db, actor.company_id, policy_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return CustomPolicyService._to_out(policy)

        new_ids = data.employee_ids if data.employee_ids is not None else None
        if new_ids is not None:
            await CustomPolicyService._ensure_employees(db, actor.company_id, new_ids)

        affected = {uuid.UUID(e) for e in policy.employee_ids} | set(new_ids or [])
        before = await CustomPolicyService._snapshot(db, actor.company_id, policy.leave_type, affected)
        old_values = {
            "name": policy.name,
            "annual_quota": policy.annual_quota,
            "employee_ids": list(policy.employee_ids),
            "is_active": policy.is_active,
        }

        if data.name is not None:
            policy.name = data.name
        if data.annual_quota is not None:
            policy.annual_quota = data.annual_quota
        if new_ids is not None:
            policy.employee_ids = [str(e) for e in dict.fromkeys(new_ids)]
        if data.settings is not None:
            policy.settings = data.settings.model_dump(mode="json")
        if data.is_active is not None:
            policy.is_active = data.is_active
        policy.updated_by = actor.user_id
        policy.updated_at = datetime.now(timezone.utc)
        await db.flush()

        after = await CustomPolicyService._snapshot(db, actor.company_id, policy.leave_type, affected)
        written = await CustomPolicyService._record_quota_changes(db, actor, policy, before, after)

        await create_audit_entry(
            db,
            company_id=actor.company_id,
            action="update",
            entity_type="custom_policy",
            entity_id=policy.id,
            actor_id=actor.employee_id,
            actor_user_id=actor.user_id,
            old_values=old_values,
            new_values=changes,
        )
        logger.info("Custom policy %s updated (%d ledger adjustments)", policy.id, written)
        return CustomPolicyService._to_out(policy)

    @staticmethod
    async def delete_policy(
        db: AsyncSession,
        actor: Actor,
        policy_id: uuid.UUID,
    ) -> CustomPolicyOut:
        """Soft delete; covered employees fall back to the next effective quota."""
        actor.require(Capability.manage_policies)
        policy = await CustomPolicyService.get_policy_model(db, actor.company_id, policy_id)
        affected = [uuid.UUID(e) for e in policy.employee_ids]
        before = await CustomPolicyService._snapshot(db, actor.company_id, policy.leave_type, affected)

        policy.is_active = False
        policy.is_deleted = True
        policy.updated_by = actor.user_id
        policy.updated_at = datetime.now(timezone.utc)
        await db.flush()

        after = await CustomPolicyService._snapshot(db, actor.company_id, policy.leave_type, affected)
        written = await CustomPolicyService._record_quota_changes(db, actor, policy, before, after)

        await create_audit_entry(
            db,
            company_id=actor.company_id,
            action="delete",
            entity_type="custom_policy",
            entity_id=policy.id,
            actor_id=actor.employee_id,
            actor_user_id=actor.user_id,
            old_values={"is_active": True, "is_deleted": False},
            new_values={"is_active": False, "is_deleted": True},
        )
        logger.info("Custom policy %s deleted (%d ledger reversals)", policy.id, written)
        return CustomPolicyService._to_out(policy)
