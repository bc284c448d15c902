"""Shared FastAPI dependencies."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.auth.dependencies import get_current_actor
from hrleave.database import get_db
from hrleave.leave.rules import LeaveRules, load_leave_rules


async def get_leave_rules(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LeaveRules:
    """Carry-forward / encashment rules in force for the actor's tenant."""
    return await load_leave_rules(db, actor.company_id)
