"""Leave ORM models: LeaveType catalog and LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, validates

from hrleave.common.audit import AuditMixin
from hrleave.common.constants import LeaveSession, LeaveStatus
from hrleave.common.models import pg_enum
from hrleave.database import Base


class LeaveType(Base, AuditMixin):
    __tablename__ = "leave_types"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "code", name="uq_leave_type_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    code: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    default_quota: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), nullable=False, default=Decimal("0"),
    )
    is_paid: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_carry_forward_allowed: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False,
    )
    is_encashable: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)


class LeaveRequest(Base, AuditMixin):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_dates"),
        sa.Index("ix_leave_requests_employee_dates", "employee_id", "start_date", "end_date"),
        sa.Index("ix_leave_requests_company_status", "company_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False,
    )
    leave_type: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    session: Mapped[LeaveSession] = mapped_column(
        pg_enum(LeaveSession, "leave_session"),
        nullable=False,
        default=LeaveSession.full_day,
    )
    duration: Mapped[Decimal] = mapped_column(sa.Numeric(6, 1), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    # Routing
    reporting_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    is_hr_fallback: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)

    # Lifecycle
    status: Mapped[LeaveStatus] = mapped_column(
        pg_enum(LeaveStatus, "leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
    )
    approved_by: Mapped[Optional[str]] = mapped_column(sa.String(128))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    approval_comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    rejected_by: Mapped[Optional[str]] = mapped_column(sa.String(128))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[str]] = mapped_column(sa.String(128))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    balance_at_request: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(7, 2))
    attachments: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    created_by: Mapped[Optional[str]] = mapped_column(sa.String(128))

    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    deleted_by: Mapped[Optional[str]] = mapped_column(sa.String(128))

    @validates("is_hr_fallback")
    def _freeze_hr_fallback(self, key: str, value: bool) -> bool:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError("is_hr_fallback is fixed when the request is created.")
        return value
