"""Custom (per-employee) leave policy ORM model."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from hrleave.common.audit import AuditMixin
from hrleave.database import Base


class CustomLeavePolicy(Base, AuditMixin):
    """Overrides the default annual quota of one leave type for listed employees.

    ``employee_ids`` holds employee UUIDs as strings; ``settings`` keys are
    ``carry_forward``, ``max_carry_forward_days`` and ``is_earned_leave``.
    """

    __tablename__ = "custom_leave_policies"
    __table_args__ = (
        sa.CheckConstraint("annual_quota > 0", name="ck_custom_policy_quota"),
        sa.Index("ix_custom_policies_lookup", "company_id", "leave_type", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False,
    )
    leave_type: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    annual_quota: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)
    employee_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    settings: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(sa.String(128))
    updated_by: Mapped[Optional[str]] = mapped_column(sa.String(128))

    def covers(self, employee_id: uuid.UUID) -> bool:
        return str(employee_id) in {str(e) for e in (self.employee_ids or [])}
