"""Notification endpoints — list, mark read, unread count."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.auth.dependencies import get_current_actor
from hrleave.common.exceptions import ForbiddenException
from hrleave.common.pagination import PaginationParams
from hrleave.database import get_db
from hrleave.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
)
from hrleave.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


def _recipient(actor: Actor) -> uuid.UUID:
    if actor.employee_id is None:
        raise ForbiddenException(
            "Notifications are addressed to employees only.", code="no-employee-record",
        )
    return actor.employee_id


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService.get_notifications(
        db, _recipient(actor), pagination, is_read=is_read,
    )


# ── GET /unread-count ───────────────────────────────────────────────
# Registered before /{notification_id}/read.

@router.get("/unread-count")
async def unread_count(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService.get_unread_count(db, _recipient(actor))
    return {"data": {"count": count}}


# ── PUT /read-all ───────────────────────────────────────────────────

@router.put("/read-all")
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService.mark_all_read(db, _recipient(actor))
    return {"message": "All notifications marked as read", "data": {"count": count}}


# ── PUT /{notification_id}/read ─────────────────────────────────────

@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService.mark_read(db, notification_id, _recipient(actor))
    return {
        "message": "Notification marked as read",
        "data": NotificationResponse.model_validate(notification),
    }
