"""Encashment Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class EncashmentRequest(BaseModel):
    leave_type: str = Field(..., min_length=1, max_length=30)
    days: Decimal = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("leave_type")
    @classmethod
    def lower_code(cls, v: str) -> str:
        return v.strip().lower()


class CompanyEncashmentRequest(BaseModel):
    """Tenant-wide run; without ``days`` every employee encashes all they can."""

    leave_type: str = Field(..., min_length=1, max_length=30)
    days: Optional[Decimal] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("leave_type")
    @classmethod
    def lower_code(cls, v: str) -> str:
        return v.strip().lower()


class EncashmentCalculation(BaseModel):
    employee_id: uuid.UUID
    leave_type: str
    eligible: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    months_of_service: int
    current_balance: Decimal
    min_balance: Decimal
    max_encashable_days: Decimal
    encashed_this_year: Decimal
    remaining_encashment_days: Decimal
    days_requested: Decimal
    daily_rate: Decimal
    encashment_amount: Decimal


class EncashmentResult(BaseModel):
    calculation: EncashmentCalculation
    entry_id: uuid.UUID
    balance_after: Decimal


class EncashmentHistoryItem(BaseModel):
    id: uuid.UUID
    leave_type: str
    days: Decimal
    encashment_amount: Decimal
    daily_rate: Decimal
    transaction_date: datetime
    reason: Optional[str] = None


class EncashmentHistory(BaseModel):
    employee_id: uuid.UUID
    year: int
    items: list[EncashmentHistoryItem]
    total_days: Decimal
    total_amount: Decimal


class EncashmentEmployeeTotal(BaseModel):
    employee_id: uuid.UUID
    employee_code: Optional[str] = None
    name: Optional[str] = None
    encashment_count: int
    total_days: Decimal
    total_amount: Decimal


class EncashmentCompanySummary(BaseModel):
    year: int
    employees: list[EncashmentEmployeeTotal]
    total_days: Decimal
    total_amount: Decimal
