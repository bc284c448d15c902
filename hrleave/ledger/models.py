"""Ledger ORM model — one immutable row per balance-affecting event."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from hrleave.common.audit import utcnow
from hrleave.common.constants import LedgerTransactionType
from hrleave.common.models import pg_enum
from hrleave.database import Base


class LeaveLedgerEntry(Base):
    """Append-only; rows carry no ``updated_at`` because they are never edited.

    ``sequence`` orders entries within one (employee, leave type) chain and
    is unique per chain. Writers take the next number from the row-locked
    chain head, so two writers that read the same head cannot both append
    after it.
    """

    __tablename__ = "leave_ledger_entries"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type", "sequence", name="uq_ledger_chain_sequence",
        ),
        sa.Index("ix_ledger_company_employee_year", "company_id", "employee_id", "year"),
        sa.Index("ix_ledger_financial_year", "company_id", "financial_year"),
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
    sequence: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    transaction_type: Mapped[LedgerTransactionType] = mapped_column(
        pg_enum(LedgerTransactionType, "ledger_transaction_type"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )
    financial_year: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    month: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    leave_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id"),
    )
    custom_policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    details: Mapped[Optional[dict]] = mapped_column(JSONB)
    adjustment_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    changed_by: Mapped[Optional[str]] = mapped_column(sa.String(128))
    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<LeaveLedgerEntry {self.leave_type}#{self.sequence} "
            f"{self.transaction_type.value} {self.amount} -> {self.balance_after}>"
        )
