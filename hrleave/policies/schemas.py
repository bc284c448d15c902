"""Custom policy and quota-resolution Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hrleave.common.constants import PolicySource


class PolicySettings(BaseModel):
    carry_forward: bool = False
    max_carry_forward_days: Decimal = Field(default=Decimal("0"), ge=0)
    is_earned_leave: bool = False


class CustomPolicyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    leave_type_id: uuid.UUID
    annual_quota: Decimal = Field(..., gt=0)
    employee_ids: list[uuid.UUID] = Field(..., min_length=1)
    settings: PolicySettings = Field(default_factory=PolicySettings)

    @field_validator("employee_ids")
    @classmethod
    def dedupe_employee_ids(cls, v: list[uuid.UUID]) -> list[uuid.UUID]:
        return list(dict.fromkeys(v))


class CustomPolicyUpdate(BaseModel):
    """Partial update; the leave type of a policy cannot change."""

    name: Optional[str] = Field(None, min_length=1, max_length=150)
    annual_quota: Optional[Decimal] = Field(None, gt=0)
    employee_ids: Optional[list[uuid.UUID]] = Field(None, min_length=1)
    settings: Optional[PolicySettings] = None
    is_active: Optional[bool] = None


class CustomPolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: str
    name: str
    leave_type_id: uuid.UUID
    leave_type: str
    annual_quota: Decimal
    employee_ids: list[str]
    settings: dict
    is_active: bool
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class QuotaResolution(BaseModel):
    leave_type: str
    quota: Decimal
    source: PolicySource
    policy_id: Optional[uuid.UUID] = None
    policy_name: Optional[str] = None


class EmployeeBalanceOut(BaseModel):
    employee_id: uuid.UUID
    leave_type: str
    total: Decimal
    used: Decimal
    balance: Decimal
    has_custom_policy: bool
    policy_id: Optional[uuid.UUID] = None
    policy_name: Optional[str] = None
    balance_source: str = Field(description="ledger | projection | quota")


class EmployeePolicies(BaseModel):
    employee_id: uuid.UUID
    policies: list[CustomPolicyOut]
