"""Core HR ORM models: Employee directory and the per-leave-type balance projection.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from hrleave.common.audit import AuditMixin, utcnow
from hrleave.common.constants import UserRole
from hrleave.common.models import pg_enum
from hrleave.database import Base


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base, AuditMixin):
    """Directory entry; ``external_user_id`` is the auth-provider identity."""

    __tablename__ = "employees"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "employee_code", name="uq_employee_code"),
        sa.Index("ix_employees_external_user_id", "external_user_id"),
        sa.Index("ix_employees_company_manager", "company_id", "reporting_manager_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    employee_code: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    external_user_id: Mapped[Optional[str]] = mapped_column(sa.String(128))
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    role: Mapped[UserRole] = mapped_column(
        pg_enum(UserRole, "user_role"), nullable=False, default=UserRole.employee,
    )
    department: Mapped[Optional[str]] = mapped_column(sa.String(100))
    reporting_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    date_of_joining: Mapped[Optional[date]] = mapped_column(sa.Date)
    basic_salary: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=Decimal("0"),
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.text("TRUE"),
    )
    is_deleted: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("FALSE"),
    )

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


# ═════════════════════════════════════════════════════════════════════
# EmployeeLeaveBalance — projection of the ledger
# ═════════════════════════════════════════════════════════════════════


class EmployeeLeaveBalance(Base):
    """Denormalized balance row per (employee, leave type).

    Written only by the ledger service (and the carry-forward period reset);
    the latest ledger ``balance_after`` wins when the two disagree.
    """

    __tablename__ = "employee_leave_balances"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "leave_type", name="uq_employee_leave_balance"),
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
    leave_type: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    total: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False, default=Decimal("0"))
    used: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False, default=Decimal("0"))
    balance: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=sa.func.now(),
    )
