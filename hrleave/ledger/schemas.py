"""Ledger Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from hrleave.common.constants import LedgerTransactionType, PolicySource


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    sequence: int
    transaction_type: LedgerTransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    transaction_date: datetime
    financial_year: str
    leave_request_id: Optional[uuid.UUID] = None
    custom_policy_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    adjustment_reason: Optional[str] = None
    changed_by: Optional[str] = None


class LedgerTypeSummary(BaseModel):
    total_allocated: Decimal
    total_used: Decimal
    total_restored: Decimal
    total_encashed: Decimal
    current_balance: Decimal
    transaction_count: int


class LedgerHistoryOut(BaseModel):
    entries: list[LedgerEntryOut]
    summary: dict[str, LedgerTypeSummary]


class ActivityCount(BaseModel):
    count: int
    days: Decimal


class BalanceSummaryOut(BaseModel):
    leave_type: str
    name: str
    is_paid: bool
    quota: Decimal
    quota_source: PolicySource
    policy_id: Optional[uuid.UUID] = None
    policy_name: Optional[str] = None
    current_balance: Decimal
    has_ledger: bool
    last_transaction_date: Optional[datetime] = None
    year: int
    allocated: ActivityCount
    used: ActivityCount
    restored: ActivityCount


class LedgerAdjustmentCreate(BaseModel):
    leave_type: str = Field(..., min_length=1, max_length=30)
    amount: Decimal
    reason: str = Field(..., min_length=1, max_length=500)
    allow_negative: bool = False


class ChainVerification(BaseModel):
    employee_id: uuid.UUID
    valid: bool
    entries_checked: int
    problems: list[str]


class ProjectionChange(BaseModel):
    leave_type: str
    projected: Decimal
    ledger: Decimal
