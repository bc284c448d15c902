"""Carry-forward Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class CarryForwardRequest(BaseModel):
    from_year: int = Field(..., ge=2000, le=2100)


class CarryForwardItem(BaseModel):
    """Preview of one leave type carried into the next financial year."""

    leave_type: str
    from_balance: Decimal
    carry_forward_amount: Decimal
    expiry_date: date
    financial_year: str
    max_days: Decimal
    rule_source: str = Field(description="rules | custom_policy")


class CarryForwardPreview(BaseModel):
    employee_id: uuid.UUID
    from_year: int
    to_year: int
    items: list[CarryForwardItem]


class CarryForwardResult(BaseModel):
    leave_type: str
    from_balance: Decimal
    carried: Decimal
    lapsed: Decimal
    new_allocation: Decimal
    new_balance: Decimal
    expiry_date: date
    financial_year: str


class CarryForwardExecution(BaseModel):
    employee_id: uuid.UUID
    from_year: int
    to_year: int
    results: list[CarryForwardResult]
    skipped: list[str] = Field(
        default_factory=list,
        description="Leave types already carried into the target year",
    )


class CarryForwardHistoryItem(BaseModel):
    id: uuid.UUID
    leave_type: str
    amount: Decimal
    balance_after: Decimal
    financial_year: str
    transaction_date: datetime
    expiry_date: Optional[date] = None
    description: Optional[str] = None


class CarryForwardSummaryItem(BaseModel):
    leave_type: str
    total_employees: int
    total_days: Decimal
    avg_days: Decimal


class CarryForwardSummary(BaseModel):
    financial_year: str
    leave_types: list[CarryForwardSummaryItem]
