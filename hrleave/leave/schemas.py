"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hrleave.common.constants import MAX_ATTACHMENTS_PER_REQUEST, LeaveSession, LeaveStatus
from hrleave.common.pagination import PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    code: str = Field(..., min_length=2, max_length=30, pattern=r"^[A-Za-z_]+$")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    default_quota: Decimal = Field(default=Decimal("0"), ge=0)
    is_paid: bool = True
    is_carry_forward_allowed: bool = False
    is_encashable: bool = False


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    description: Optional[str] = None
    default_quota: Decimal
    is_paid: bool
    is_carry_forward_allowed: bool
    is_encashable: bool
    is_active: bool


# ═════════════════════════════════════════════════════════════════════
# Leave Request — write
# ═════════════════════════════════════════════════════════════════════


class AttachmentMeta(BaseModel):
    """Descriptor of an uploaded supporting document; the bytes live elsewhere."""

    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str
    size_bytes: int = Field(..., ge=0)
    url: Optional[str] = None


class LeaveRequestCreate(BaseModel):
    """Payload for filing a leave request.

    ``employee_id`` files on behalf of someone else; ``reporting_manager_id``
    overrides the manager from the directory.
    """

    leave_type: str = Field(..., min_length=1, max_length=30)
    start_date: date
    end_date: date
    session: LeaveSession = LeaveSession.full_day
    reason: Optional[str] = Field(None, max_length=1000)
    employee_id: Optional[uuid.UUID] = None
    reporting_manager_id: Optional[str] = None
    attachments: list[AttachmentMeta] = Field(default_factory=list)

    @field_validator("leave_type")
    @classmethod
    def lower_code(cls, v: str) -> str:
        return v.strip().lower()


class LeaveRequestUpdate(BaseModel):
    leave_type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    session: Optional[LeaveSession] = None
    reason: Optional[str] = Field(None, max_length=1000)
    attachments: Optional[list[AttachmentMeta]] = Field(
        None, max_length=MAX_ATTACHMENTS_PER_REQUEST,
    )


class LeaveApproveRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=1000)


class LeaveRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — read
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: str
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type: str
    start_date: date
    end_date: date
    session: LeaveSession
    duration: Decimal
    reason: Optional[str] = None
    reporting_manager_id: Optional[uuid.UUID] = None
    is_hr_fallback: bool
    status: LeaveStatus
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_comments: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    balance_at_request: Optional[Decimal] = None
    attachments: list[dict] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class LeaveRequestList(BaseModel):
    data: list[LeaveRequestOut]
    meta: PaginationMeta
