"""Auth dependencies — JWT validation, capability enforcement."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.common.constants import Capability, UserRole
from hrleave.config import settings
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.database import get_db


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Validate the JWT and resolve the acting employee (if the user is one)."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    user_id = payload.get("sub")
    company_id = payload.get("company_id")
    if not user_id or not company_id:
        raise HTTPException(status_code=401, detail="Token is missing subject or company.")

    try:
        role = UserRole(payload.get("role", UserRole.employee.value))
    except ValueError:
        role = UserRole.employee

    employee = await EmployeeDirectory.resolve_employee(
        db, company_id, payload.get("employee_id") or user_id,
    )
    if employee is None and role in (UserRole.employee, UserRole.manager):
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    actor = Actor.build(
        user_id=user_id, role=role, company_id=company_id, employee=employee,
    )
    request.state.actor = actor
    return actor


# ── Capability-based dependency ─────────────────────────────────────

def require_capability(*capabilities: Capability) -> Callable:
    """Return a FastAPI dependency that requires every listed capability."""

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        for capability in capabilities:
            actor.require(capability)
        return actor

    return _check
