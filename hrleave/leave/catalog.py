"""Leave-type catalog: per-tenant leave types with their default quota."""

from __future__ import annotations

import uuid
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.common.exceptions import DuplicateException, NotFoundException
from hrleave.leave.models import LeaveType


class LeaveTypeService:

    @staticmethod
    async def list_leave_types(
        db: AsyncSession,
        company_id: str,
        *,
        include_inactive: bool = False,
    ) -> Sequence[LeaveType]:
        query = select(LeaveType).where(
            LeaveType.company_id == company_id,
            LeaveType.is_deleted.is_(False),
        )
        if not include_inactive:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query.order_by(LeaveType.code))
        return result.scalars().all()

    @staticmethod
    async def get_by_code(
        db: AsyncSession,
        company_id: str,
        code: str,
        *,
        active_only: bool = True,
    ) -> LeaveType:
        query = select(LeaveType).where(
            LeaveType.company_id == company_id,
            LeaveType.code == code.lower(),
            LeaveType.is_deleted.is_(False),
        )
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        leave_type = (await db.execute(query)).scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", code)
        return leave_type

    @staticmethod
    async def get_leave_type(
        db: AsyncSession,
        company_id: str,
        leave_type_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> LeaveType:
        query = select(LeaveType).where(
            LeaveType.id == leave_type_id,
            LeaveType.company_id == company_id,
            LeaveType.is_deleted.is_(False),
        )
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        leave_type = (await db.execute(query)).scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)
        return leave_type

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        company_id: str,
        **values,
    ) -> LeaveType:
        code = values.pop("code").lower()
        existing = await db.execute(
            select(LeaveType.id).where(
                LeaveType.company_id == company_id,
                LeaveType.code == code,
            )
        )
        if existing.first() is not None:
            raise DuplicateException("code", code)
        leave_type = LeaveType(company_id=company_id, code=code, **values)
        db.add(leave_type)
        await db.flush()
        return leave_type
