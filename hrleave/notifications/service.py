"""Notification service — CRUD operations and cross-module helper dispatchers."""

from __future__ import annotations

import functools
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.common.constants import NotificationType, UserRole
from hrleave.common.exceptions import ForbiddenException, NotFoundException
from hrleave.common.pagination import PaginationMeta, PaginationParams
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.notifications.models import Notification
from hrleave.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        company_id: str,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        leave_request_id: Optional[uuid.UUID] = None,
        leave_type: Optional[str] = None,
        days: Optional[Decimal] = None,
        balance: Optional[Decimal] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            company_id=company_id,
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
            leave_request_id=leave_request_id,
            leave_type=leave_type,
            days=days,
            balance=balance,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == employee_id)
            .order_by(Notification.created_at.desc())
        )
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)

        count_q = query.with_only_columns(func.count()).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()
        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        meta = PaginationMeta.build(pagination.page, pagination.page_size, total)
        unread = await NotificationService.get_unread_count(db, employee_id)
        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(**meta.model_dump(), unread=unread),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        result = await db.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        notification = result.scalars().first()
        if notification is None:
            raise NotFoundException("Notification", notification_id)
        if notification.recipient_id != employee_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(db: AsyncSession, employee_id: uuid.UUID) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(db: AsyncSession, employee_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Cross-module helper dispatchers ─────────────────────────────────
# Imported by the leave, policy and year-end services. Each runs in a
# savepoint; a failure is logged and never aborts the caller's transaction.


def _best_effort(dispatcher):
    @functools.wraps(dispatcher)
    async def wrapper(db: AsyncSession, *args, **kwargs) -> list[Notification]:
        try:
            async with db.begin_nested():
                return await dispatcher(db, *args, **kwargs)
        except Exception:
            logger.warning("Notification dispatch %s failed", dispatcher.__name__, exc_info=True)
            return []

    return wrapper


async def _approvers_for(db: AsyncSession, leave_request) -> Sequence[uuid.UUID]:
    if leave_request.is_hr_fallback:
        hr_staff = await EmployeeDirectory.list_employees_with_role(
            db, leave_request.company_id, UserRole.hr,
        )
        return [e.id for e in hr_staff if e.id != leave_request.employee_id]
    return [leave_request.reporting_manager_id]


def _leave_fields(leave_request) -> dict:
    return {
        "action_url": f"/leave/requests/{leave_request.id}",
        "entity_type": "leave_request",
        "entity_id": leave_request.id,
        "leave_request_id": leave_request.id,
        "leave_type": leave_request.leave_type,
        "days": leave_request.duration,
    }


def _period(leave_request) -> str:
    return (
        f"{leave_request.start_date} to {leave_request.end_date} "
        f"({leave_request.duration} day(s))"
    )


@_best_effort
async def notify_leave_request(db: AsyncSession, leave_request) -> list[Notification]:
    """Notify the reporting manager, or every HR employee for HR-pool requests."""
    sent = []
    for approver_id in await _approvers_for(db, leave_request):
        sent.append(await NotificationService.create_notification(
            db,
            company_id=leave_request.company_id,
            recipient_id=approver_id,
            type=NotificationType.action_required,
            title="New Leave Request",
            message=f"A {leave_request.leave_type} leave request for {_period(leave_request)} requires your approval.",
            **_leave_fields(leave_request),
        ))
    return sent


@_best_effort
async def notify_leave_approved(db: AsyncSession, leave_request) -> list[Notification]:
    return [await NotificationService.create_notification(
        db,
        company_id=leave_request.company_id,
        recipient_id=leave_request.employee_id,
        type=NotificationType.approval,
        title="Leave Request Approved",
        message=f"Your leave request for {_period(leave_request)} has been approved.",
        **_leave_fields(leave_request),
    )]


@_best_effort
async def notify_leave_rejected(db: AsyncSession, leave_request, reason: str) -> list[Notification]:
    return [await NotificationService.create_notification(
        db,
        company_id=leave_request.company_id,
        recipient_id=leave_request.employee_id,
        type=NotificationType.alert,
        title="Leave Request Rejected",
        message=f"Your leave request for {_period(leave_request)} was rejected. Reason: {reason}",
        **_leave_fields(leave_request),
    )]


@_best_effort
async def notify_leave_cancelled(
    db: AsyncSession,
    leave_request,
    cancelled_by_owner: bool,
) -> list[Notification]:
    """Owner cancellations go to the approvers; cancellations by others go to the owner."""
    if cancelled_by_owner:
        recipients = await _approvers_for(db, leave_request)
        message = f"A leave request for {_period(leave_request)} was withdrawn by the employee."
    else:
        recipients = [leave_request.employee_id]
        message = f"Your leave request for {_period(leave_request)} was cancelled."
    sent = []
    for recipient_id in recipients:
        sent.append(await NotificationService.create_notification(
            db,
            company_id=leave_request.company_id,
            recipient_id=recipient_id,
            type=NotificationType.info,
            title="Leave Request Cancelled",
            message=message,
            **_leave_fields(leave_request),
        ))
    return sent


@_best_effort
async def notify_balance_changed(
    db: AsyncSession,
    *,
    company_id: str,
    employee_id: uuid.UUID,
    leave_type: str,
    amount: Decimal,
    balance: Decimal,
    reason: str,
) -> list[Notification]:
    sign = "+" if amount > 0 else ""
    return [await NotificationService.create_notification(
        db,
        company_id=company_id,
        recipient_id=employee_id,
        type=NotificationType.info,
        title="Leave Balance Updated",
        message=f"{leave_type} balance changed by {sign}{amount} ({reason}). New balance: {balance}.",
        entity_type="leave_balance",
        leave_type=leave_type,
        days=amount,
        balance=balance,
    )]
