"""Response envelopes shared by the tenant-wide batch engines."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class BatchFailure(BaseModel):
    employee_id: uuid.UUID
    employee_code: Optional[str] = None
    code: str
    error: str


class BatchReport(BaseModel):
    """Aggregate outcome of a tenant-wide run; failures never stop the batch."""

    total_employees: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    total_days: Decimal = Decimal("0")
    failures: list[BatchFailure] = Field(default_factory=list)
