"""The acting user of a request: role, tenant, resolved employee and capabilities."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional

from hrleave.common.constants import ROLE_CAPABILITIES, Capability, UserRole
from hrleave.common.exceptions import ForbiddenException
from hrleave.core_hr.models import Employee


@dataclass(frozen=True)
class Actor:
    """Resolved once per request; transitions check ``capabilities`` only."""

    user_id: str
    role: UserRole
    company_id: str
    employee: Optional[Employee] = None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        *,
        user_id: str,
        role: UserRole,
        company_id: str,
        employee: Optional[Employee] = None,
    ) -> "Actor":
        return cls(
            user_id=user_id,
            role=role,
            company_id=company_id,
            employee=employee,
            capabilities=ROLE_CAPABILITIES.get(role, frozenset()),
        )

    @property
    def employee_id(self) -> Optional[uuid.UUID]:
        return self.employee.id if self.employee is not None else None

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability, detail: Optional[str] = None) -> None:
        if capability not in self.capabilities:
            raise ForbiddenException(
                detail or f"Capability '{capability.value}' is not granted to role '{self.role.value}'.",
                code="missing-capability",
            )

    def is_employee(self, employee_id: uuid.UUID) -> bool:
        """Identity comparison on the resolved employee, never the raw user id."""
        return self.employee is not None and self.employee.id == employee_id

    def require_self_or(
        self,
        capability: Capability,
        employee_id: uuid.UUID,
        detail: Optional[str] = None,
    ) -> None:
        """Allow the employee themself; anyone else needs *capability*."""
        if not self.is_employee(employee_id):
            self.require(capability, detail)
