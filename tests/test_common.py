"""Tests for common utilities — pagination, audit trail, actor capabilities
and the exception hierarchy.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.common.audit import AuditTrail, _jsonable, create_audit_entry
from hrleave.common.constants import Capability, LeaveStatus, UserRole
from hrleave.common.exceptions import (
    ConflictError,
    DuplicateException,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
)
from hrleave.common.pagination import PaginationMeta, PaginationParams, paginate
from hrleave.core_hr.models import Employee
from tests.conftest import COMPANY, actor_for, add_employee, system_actor


# ═════════════════════════════════════════════════════════════════════
# PAGINATION TESTS
# ═════════════════════════════════════════════════════════════════════


class TestPaginationMeta:

    def test_build_first_page(self):
        meta = PaginationMeta.build(1, 10, 25)
        assert meta.total_pages == 3
        assert meta.has_next is True
        assert meta.has_prev is False

    def test_build_last_page(self):
        meta = PaginationMeta.build(3, 10, 25)
        assert meta.has_next is False
        assert meta.has_prev is True

    def test_build_empty(self):
        meta = PaginationMeta.build(1, 10, 0)
        assert meta.total_pages == 0
        assert meta.has_next is False


class TestPaginate:
    """Tests for the paginate helper."""

    @pytest.fixture
    async def staff(self, db: AsyncSession):
        for name in ("Dana", "Ben", "Cleo", "Ava", "Eve"):
            await add_employee(db, first_name=name)

    async def test_sorted_second_page(self, db: AsyncSession, staff):
        params = PaginationParams(page=2, page_size=2, sort="first_name")
        rows, meta = await paginate(db, select(Employee), params, model=Employee)

        assert [e.first_name for e in rows] == ["Cleo", "Dana"]
        assert meta.total == 5
        assert meta.total_pages == 3

    async def test_descending_sort(self, db: AsyncSession, staff):
        params = PaginationParams(page=1, page_size=2, sort="-first_name")
        rows, _ = await paginate(db, select(Employee), params, model=Employee)
        assert [e.first_name for e in rows] == ["Eve", "Dana"]

    async def test_unknown_sort_field_is_ignored(self, db: AsyncSession, staff):
        params = PaginationParams(page=1, page_size=10, sort="salary_band")
        rows, meta = await paginate(db, select(Employee), params, model=Employee)
        assert len(rows) == 5
        assert meta.has_next is False


# ═════════════════════════════════════════════════════════════════════
# AUDIT TRAIL TESTS
# ═════════════════════════════════════════════════════════════════════


class TestAudit:

    def test_jsonable_nested_values(self):
        ref = uuid.uuid4()
        assert _jsonable({
            "status": LeaveStatus.on_hold,
            "days": Decimal("1.5"),
            "ids": (ref,),
            "window": {"start": date(2026, 3, 2)},
        }) == {
            "status": "on-hold",
            "days": "1.5",
            "ids": [str(ref)],
            "window": {"start": "2026-03-02"},
        }
        assert _jsonable(None) is None

    async def test_create_audit_entry(self, db: AsyncSession, hr_user):
        entity_id = uuid.uuid4()
        await create_audit_entry(
            db,
            company_id=COMPANY,
            action="approve",
            entity_type="leave_request",
            entity_id=entity_id,
            actor_id=hr_user.id,
            actor_user_id=hr_user.external_user_id,
            old_values={"status": LeaveStatus.pending},
            new_values={"status": LeaveStatus.approved},
        )

        entry = (await db.execute(
            select(AuditTrail).where(AuditTrail.entity_id == entity_id)
        )).scalars().one()
        assert entry.action == "approve"
        assert entry.old_values == {"status": "pending"}
        assert entry.new_values == {"status": "approved"}


# ═════════════════════════════════════════════════════════════════════
# ACTOR TESTS
# ═════════════════════════════════════════════════════════════════════


class TestActor:
    """Capabilities are derived from the role once, then checked by name."""

    def test_employee_has_no_capabilities(self):
        assert system_actor(UserRole.employee).capabilities == frozenset()

    def test_manager_capabilities(self):
        assert system_actor(UserRole.manager).capabilities == {
            Capability.approve_as_manager,
            Capability.bypass_overlap_check,
            Capability.view_team_leaves,
        }

    def test_hr_cannot_approve_any(self):
        hr = system_actor(UserRole.hr)
        assert hr.can(Capability.approve_as_hr)
        assert not hr.can(Capability.approve_any)

    @pytest.mark.parametrize("role", [UserRole.admin, UserRole.superadmin])
    def test_admins_have_everything(self, role):
        assert system_actor(role).capabilities == frozenset(Capability)

    def test_require_raises_with_code(self):
        with pytest.raises(ForbiddenException) as exc:
            system_actor(UserRole.manager).require(Capability.manage_policies)
        assert exc.value.code == "missing-capability"
        assert "manage_policies" in exc.value.detail

    async def test_require_self_or(self, db: AsyncSession, employee, manager):
        actor = actor_for(employee)
        assert actor.employee_id == employee.id
        assert actor.is_employee(employee.id)

        actor.require_self_or(Capability.view_any_balance, employee.id)
        with pytest.raises(ForbiddenException):
            actor.require_self_or(Capability.view_any_balance, manager.id)

    def test_service_account_is_nobody(self):
        actor = Actor.build(user_id="svc", role=UserRole.admin, company_id=COMPANY)
        assert actor.employee_id is None
        assert actor.is_employee(uuid.uuid4()) is False


# ═════════════════════════════════════════════════════════════════════
# EXCEPTION TESTS
# ═════════════════════════════════════════════════════════════════════


class TestExceptions:

    def test_status_codes(self):
        assert NotFoundException("Leave Request", "x").status_code == 404
        assert ForbiddenException().status_code == 403
        assert ValidationException({"days": ["bad"]}).status_code == 422
        assert ConflictError("busy").status_code == 409

    def test_default_codes(self):
        assert NotFoundException("Leave Request", "x").code == "not-found"
        assert ValidationException({}).code == "validation-error"
        assert ConflictError("busy", code="leave-state-changed").code == "leave-state-changed"

    def test_duplicate_is_conflict(self):
        exc = DuplicateException("code", "casual")
        assert isinstance(exc, ConflictError)
        assert exc.code == "duplicate"
        assert exc.errors == {"code": ["'casual' is already in use."]}

    def test_insufficient_balance_shortfall(self):
        exc = InsufficientBalanceError("casual", Decimal("2"), Decimal("3.5"))
        assert exc.status_code == 409
        assert exc.code == "insufficient-balance"
        assert exc.shortfall == Decimal("1.5")
        assert exc.context["shortfall"] == "1.5"
        assert exc.context["leave_type"] == "casual"
