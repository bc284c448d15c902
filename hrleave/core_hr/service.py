"""Employee directory lookups used by the leave engines."""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.common.constants import UserRole
from hrleave.common.exceptions import NotFoundException
from hrleave.core_hr.models import Employee, EmployeeLeaveBalance


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class EmployeeDirectory:
    """Read-side access to employees, scoped to a tenant."""

    @staticmethod
    async def resolve_employee(
        db: AsyncSession,
        company_id: str,
        key,
        *,
        include_inactive: bool = False,
    ) -> Optional[Employee]:
        """Find an employee by any equivalent key.

        *key* may be the employee id, the auth-provider user id, the
        employee code or the e-mail address. Returns ``None`` when nothing
        matches.
        """
        if key is None or key == "":
            return None

        clauses = [
            Employee.external_user_id == str(key),
            Employee.employee_code == str(key),
            Employee.email == str(key),
        ]
        as_uuid = _as_uuid(key)
        if as_uuid is not None:
            clauses.append(Employee.id == as_uuid)

        query = select(Employee).where(
            Employee.company_id == company_id,
            Employee.is_deleted.is_(False),
            or_(*clauses),
        )
        if not include_inactive:
            query = query.where(Employee.is_active.is_(True))
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        company_id: str,
        employee_id: uuid.UUID,
    ) -> Employee:
        """Load an employee of the tenant or raise 404."""
        result = await db.execute(
            select(Employee).where(
                Employee.id == employee_id,
                Employee.company_id == company_id,
                Employee.is_deleted.is_(False),
            )
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def list_active_employees(
        db: AsyncSession,
        company_id: str,
    ) -> Sequence[Employee]:
        result = await db.execute(
            select(Employee)
            .where(
                Employee.company_id == company_id,
                Employee.is_active.is_(True),
                Employee.is_deleted.is_(False),
            )
            .order_by(Employee.employee_code)
        )
        return result.scalars().all()

    @staticmethod
    async def list_employees_with_role(
        db: AsyncSession,
        company_id: str,
        role: UserRole,
    ) -> Sequence[Employee]:
        result = await db.execute(
            select(Employee).where(
                Employee.company_id == company_id,
                Employee.role == role,
                Employee.is_active.is_(True),
                Employee.is_deleted.is_(False),
            )
        )
        return result.scalars().all()

    @staticmethod
    async def get_projection(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
    ) -> Optional[EmployeeLeaveBalance]:
        """The employee's denormalized balance row for *leave_type*, if any."""
        result = await db.execute(
            select(EmployeeLeaveBalance).where(
                EmployeeLeaveBalance.employee_id == employee_id,
                EmployeeLeaveBalance.leave_type == leave_type,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get_employees_by_ids(
        db: AsyncSession,
        company_id: str,
        employee_ids,
    ) -> dict[uuid.UUID, Employee]:
        ids = list(employee_ids)
        if not ids:
            return {}
        result = await db.execute(
            select(Employee).where(
                Employee.company_id == company_id,
                Employee.id.in_(ids),
            )
        )
        return {e.id: e for e in result.scalars().all()}
