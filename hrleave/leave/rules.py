"""Carry-forward and encashment rule tables.

Engines never read module globals: they are constructed with a
``LeaveRules`` instance, resolved per tenant by :func:`load_leave_rules`
(built-in defaults → optional ``LEAVE_RULES_FILE`` → ``AppSetting`` row).
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.common.models import AppSetting
from hrleave.config import settings

logger = logging.getLogger(__name__)


class CarryForwardRule(BaseModel):
    enabled: bool = False
    max_days: Decimal = Field(default=Decimal("0"), ge=0)
    validity_months: int = Field(default=0, ge=0)
    require_min_balance: Decimal = Field(default=Decimal("0"), ge=0)


class EncashmentRule(BaseModel):
    enabled: bool = False
    min_balance: Decimal = Field(default=Decimal("0"), ge=0)
    max_encashment_days: Decimal = Field(default=Decimal("0"), ge=0)
    require_min_service: int = Field(default=0, ge=0, description="Months of tenure")
    encashment_rate: str = "basic"


class LeaveRules(BaseModel):
    carry_forward: dict[str, CarryForwardRule] = Field(default_factory=dict)
    encashment: dict[str, EncashmentRule] = Field(default_factory=dict)
    new_allocations: dict[str, Decimal] = Field(default_factory=dict)

    def carry_forward_rule(self, leave_type: str) -> CarryForwardRule:
        return self.carry_forward.get(leave_type) or CarryForwardRule()

    def encashment_rule(self, leave_type: str) -> EncashmentRule:
        return self.encashment.get(leave_type) or EncashmentRule()

    def new_allocation(self, leave_type: str) -> Decimal:
        return self.new_allocations.get(leave_type, Decimal("0"))

    def merged(self, override: dict[str, Any]) -> "LeaveRules":
        """Return a copy with per-leave-type entries of *override* replacing ours."""
        data = self.model_dump()
        for section in ("carry_forward", "encashment", "new_allocations"):
            data[section].update(override.get(section) or {})
        return LeaveRules.model_validate(data)


def default_leave_rules() -> LeaveRules:
    disabled = ("maternity", "paternity", "bereavement", "unpaid", "special")
    carry_forward = {
        "casual": CarryForwardRule(enabled=True, max_days=3, validity_months=3, require_min_balance=2),
        "sick": CarryForwardRule(enabled=True, max_days=5, validity_months=6, require_min_balance=3),
        "earned": CarryForwardRule(enabled=True, max_days=15, validity_months=12, require_min_balance=5),
        "compensatory": CarryForwardRule(enabled=True, max_days=2, validity_months=2, require_min_balance=1),
    }
    carry_forward.update({code: CarryForwardRule() for code in disabled})

    encashment = {
        "earned": EncashmentRule(
            enabled=True, min_balance=5, max_encashment_days=15, require_min_service=12,
        ),
        "compensatory": EncashmentRule(
            enabled=True, min_balance=2, max_encashment_days=5, require_min_service=6,
        ),
    }
    encashment.update({code: EncashmentRule() for code in ("casual", "sick", *disabled)})

    new_allocations = {
        "casual": Decimal("10"),
        "sick": Decimal("10"),
        "earned": Decimal("15"),
        "compensatory": Decimal("2"),
        "maternity": Decimal("90"),
        "paternity": Decimal("15"),
        "bereavement": Decimal("3"),
        "unpaid": Decimal("0"),
        "special": Decimal("5"),
    }
    return LeaveRules(
        carry_forward=carry_forward,
        encashment=encashment,
        new_allocations=new_allocations,
    )


def load_base_rules(path: Optional[str] = None) -> LeaveRules:
    """Defaults, overridden by the JSON file at *path* / ``LEAVE_RULES_FILE``."""
    rules = default_leave_rules()
    path = path or settings.LEAVE_RULES_FILE
    if path:
        override = json.loads(Path(path).read_text(encoding="utf-8"))
        rules = rules.merged(override)
        logger.info("Loaded leave rule overrides from %s", path)
    return rules


def tenant_rules_key(company_id: str) -> str:
    return f"leave_rules:{company_id}"


async def load_leave_rules(db: AsyncSession, company_id: str) -> LeaveRules:
    """Rules in force for *company_id*."""
    rules = load_base_rules()
    result = await db.execute(
        select(AppSetting).where(AppSetting.key == tenant_rules_key(company_id))
    )
    setting = result.scalars().first()
    if setting is not None:
        rules = rules.merged(setting.value)
    return rules


async def save_tenant_rules(
    db: AsyncSession,
    company_id: str,
    override: LeaveRules,
    updated_by: Optional[str] = None,
) -> LeaveRules:
    """Persist a tenant override and return the merged rules now in force."""
    key = tenant_rules_key(company_id)
    value = json.loads(override.model_dump_json())
    result = await db.execute(select(AppSetting).where(AppSetting.key == key))
    setting = result.scalars().first()
    if setting is None:
        setting = AppSetting(key=key, value=value, description="Tenant leave rules")
        db.add(setting)
    else:
        setting.value = value
    setting.updated_by = updated_by
    await db.flush()
    logger.info("Leave rules updated for company %s by %s", company_id, updated_by)
    return load_base_rules().merged(value)
