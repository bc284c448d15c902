"""Leave service layer — request lifecycle, routing and approvals.

Business logic:
  - Duration from the date range and session (half days count 0.5)
  - Overlap check against the employee's pending/approved requests
  - Routing to the reporting manager, else to the HR pool (fixed at creation)
  - Capability-based approve / reject / cancel with self-approval blocked
  - Status transitions are compare-and-swap on the current status, so two
    concurrent approvals cannot both succeed
  - Approval debits the ledger; cancelling an approved request restores it
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.auth.actor import Actor
from hrleave.common.audit import create_audit_entry
from hrleave.common.constants import (
    ALLOWED_ATTACHMENT_MIME_TYPES,
    MAX_ATTACHMENTS_PER_REQUEST,
    Capability,
    LeaveSession,
    LeaveStatus,
)
from hrleave.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
)
from hrleave.common.pagination import PaginationParams, paginate
from hrleave.config import settings
from hrleave.core_hr.models import Employee
from hrleave.core_hr.service import EmployeeDirectory
from hrleave.leave.catalog import LeaveTypeService
from hrleave.leave.models import LeaveRequest
from hrleave.leave.schemas import (
    AttachmentMeta,
    LeaveRequestCreate,
    LeaveRequestList,
    LeaveRequestOut,
    LeaveRequestUpdate,
)
from hrleave.ledger.service import LedgerService
from hrleave.notifications.service import (
    notify_leave_approved,
    notify_leave_cancelled,
    notify_leave_rejected,
    notify_leave_request,
)
from hrleave.policies.schemas import EmployeeBalanceOut
from hrleave.policies.service import PolicyResolver

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")
ACTIVE_STATUSES = (LeaveStatus.pending, LeaveStatus.approved)
LIST_SCOPES = ("my", "team", "hr-pool", "all")


def _today() -> date:
    return date.today()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def compute_duration(start_date: date, end_date: date, session: LeaveSession) -> Decimal:
    """Inclusive day count; a half-day session takes half a day off the range."""
    days = Decimal((end_date - start_date).days + 1)
    if session == LeaveSession.full_day:
        return days
    if days == 1:
        return HALF_DAY
    return max(HALF_DAY, days - HALF_DAY)


def validate_attachments(attachments: list[AttachmentMeta]) -> list[dict[str, Any]]:
    """Check count, size and type of attachment descriptors; return them as JSON."""
    errors: list[str] = []
    if len(attachments) > MAX_ATTACHMENTS_PER_REQUEST:
        errors.append(f"At most {MAX_ATTACHMENTS_PER_REQUEST} attachments are allowed.")
    max_bytes = settings.MAX_ATTACHMENT_SIZE_MB * 1024 * 1024
    for item in attachments:
        if item.size_bytes > max_bytes:
            errors.append(
                f"'{item.filename}' exceeds the {settings.MAX_ATTACHMENT_SIZE_MB}MB limit."
            )
        if item.content_type.lower() not in ALLOWED_ATTACHMENT_MIME_TYPES:
            errors.append(f"'{item.filename}' has unsupported type '{item.content_type}'.")
    if errors:
        raise ValidationException({"attachments": errors}, code="invalid-attachment")
    return [item.model_dump(mode="json") for item in attachments]


# ═════════════════════════════════════════════════════════════════════
# LeaveRequestService
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestService:
    """Async leave request operations: filing, listing, transitions."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _to_out(leave_req: LeaveRequest) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(leave_req)

    @staticmethod
    async def _load(
        db: AsyncSession,
        company_id: str,
        request_id: uuid.UUID,
    ) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest).where(
                LeaveRequest.id == request_id,
                LeaveRequest.company_id == company_id,
                LeaveRequest.is_deleted.is_(False),
            )
        )
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", request_id)
        return leave_req

    @staticmethod
    async def _find_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[LeaveRequest]:
        query = select(LeaveRequest).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.is_deleted.is_(False),
            LeaveRequest.status.in_(ACTIVE_STATUSES),
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)
        result = await db.execute(query.limit(1))
        return result.scalars().first()

    @staticmethod
    async def _ensure_no_overlap(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        if actor.can(Capability.bypass_overlap_check):
            return
        existing = await LeaveRequestService._find_overlap(
            db, employee_id, start_date, end_date, exclude_id,
        )
        if existing is not None:
            raise ConflictError(
                f"Leave overlaps an existing {existing.status.value} request "
                f"({existing.start_date} to {existing.end_date}).",
                code="overlapping-leave",
                context={"conflicting_request_id": str(existing.id)},
            )

    @staticmethod
    def _validate_range(start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise ValidationException(
                {"end_date": ["End date must be on or after start date."]},
                code="invalid-date-range",
            )

    @staticmethod
    async def _resolve_manager(
        db: AsyncSession,
        company_id: str,
        employee: Employee,
        override: Optional[str],
    ) -> Optional[Employee]:
        """Reporting manager for a new request; ``None`` routes it to HR.

        A stored manager reference that no longer resolves (deactivated or
        deleted manager) routes to HR. Only an explicit *override* that does
        not resolve is an error.
        """
        key = override or employee.reporting_manager_id
        if key is None:
            return None
        manager = await EmployeeDirectory.resolve_employee(db, company_id, key)
        if manager is None and not override:
            logger.info(
                "Reporting manager %s of %s does not resolve; routing to HR",
                key, employee.id,
            )
            return None
        if manager is None:
            raise ValidationException(
                {"reporting_manager_id": [f"Reporting manager '{key}' was not found."]},
                code="manager-not-found",
            )
        if manager.id == employee.id:
            raise ValidationException(
                {"reporting_manager_id": ["An employee cannot be their own reporting manager."]},
                code="self-manager",
            )
        return manager

    @staticmethod
    def _ensure_can_decide(actor: Actor, leave_req: LeaveRequest) -> None:
        """Approve/reject authorization; the order of checks matters."""
        if actor.is_employee(leave_req.employee_id):
            raise ForbiddenException(
                "You cannot approve or reject your own leave request.",
                code="self-approval",
            )
        if actor.can(Capability.approve_any):
            return
        if leave_req.is_hr_fallback:
            if actor.can(Capability.approve_as_hr):
                return
            raise ForbiddenException(
                "This request is awaiting HR; only HR can act on it.",
                code="hr-pool-only",
            )
        if (
            actor.can(Capability.approve_as_manager)
            and actor.employee_id is not None
            and actor.employee_id == leave_req.reporting_manager_id
        ):
            return
        raise ForbiddenException(
            "Only the assigned reporting manager can act on this request.",
            code="not-assigned-manager",
        )

    @staticmethod
    def _ensure_pending(leave_req: LeaveRequest, action: str) -> None:
        if leave_req.status != LeaveStatus.pending:
            raise ConflictError(
                f"Cannot {action} a leave request that is {leave_req.status.value}.",
                code="leave-not-pending",
                context={"status": leave_req.status.value},
            )

    @staticmethod
    async def _guarded_update(
        db: AsyncSession,
        leave_req: LeaveRequest,
        expected: LeaveStatus,
        **values: Any,
    ) -> None:
        """Write *values* only if the row is still in *expected* status."""
        result = await db.execute(
            update(LeaveRequest)
            .where(
                LeaveRequest.id == leave_req.id,
                LeaveRequest.status == expected,
                LeaveRequest.is_deleted.is_(False),
            )
            .values(updated_at=_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                f"Leave request is no longer {expected.value}; it was changed concurrently.",
                code="leave-state-changed",
            )
        await db.refresh(leave_req)

    @staticmethod
    async def _audit(
        db: AsyncSession,
        actor: Actor,
        leave_req: LeaveRequest,
        action: str,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> None:
        await create_audit_entry(
            db,
            company_id=leave_req.company_id,
            action=action,
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            actor_user_id=actor.user_id,
            old_values=old_values,
            new_values=new_values,
        )

    # ─────────────────────────────────────────────────────────────────
    # Filing
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_leave(
        db: AsyncSession,
        actor: Actor,
        data: LeaveRequestCreate,
    ) -> LeaveRequestOut:
        """File a leave request for the actor, or on behalf of another employee."""
        if data.employee_id is not None and not actor.is_employee(data.employee_id):
            actor.require(
                Capability.file_on_behalf,
                "You can only file leave requests for yourself.",
            )
            employee = await EmployeeDirectory.get_employee(db, actor.company_id, data.employee_id)
        elif actor.employee is not None:
            employee = actor.employee
        else:
            raise ForbiddenException(
                "No employee record is linked to this user.",
                code="no-employee-record",
            )
        if not employee.is_active:
            raise ValidationException(
                {"employee_id": ["Leave cannot be filed for an inactive employee."]},
            )

        LeaveRequestService._validate_range(data.start_date, data.end_date)
        leave_type = await LeaveTypeService.get_by_code(db, actor.company_id, data.leave_type)
        manager = await LeaveRequestService._resolve_manager(
            db, actor.company_id, employee, data.reporting_manager_id,
        )
        attachments = validate_attachments(data.attachments)
        await LeaveRequestService._ensure_no_overlap(
            db, actor, employee.id, data.start_date, data.end_date,
        )

        balance = await PolicyResolver.resolve_employee_balance(
            db, actor.company_id, employee.id, leave_type.code,
        )
        leave_req = LeaveRequest(
            company_id=actor.company_id,
            employee_id=employee.id,
            leave_type_id=leave_type.id,
            leave_type=leave_type.code,
            start_date=data.start_date,
            end_date=data.end_date,
            session=data.session,
            duration=compute_duration(data.start_date, data.end_date, data.session),
            reason=data.reason,
            reporting_manager_id=manager.id if manager is not None else None,
            is_hr_fallback=manager is None,
            status=LeaveStatus.pending,
            balance_at_request=balance.balance,
            attachments=attachments,
            created_by=actor.user_id,
        )
        db.add(leave_req)
        await db.flush()

        await LeaveRequestService._audit(
            db, actor, leave_req, "create",
            new_values={
                "employee_id": leave_req.employee_id,
                "leave_type": leave_req.leave_type,
                "start_date": leave_req.start_date,
                "end_date": leave_req.end_date,
                "duration": leave_req.duration,
                "is_hr_fallback": leave_req.is_hr_fallback,
            },
        )
        await notify_leave_request(db, leave_req)
        logger.info(
            "Leave request %s filed for %s (%s, %s days, %s)",
            leave_req.id, employee.id, leave_req.leave_type, leave_req.duration,
            "HR pool" if leave_req.is_hr_fallback else f"manager {leave_req.reporting_manager_id}",
        )
        return LeaveRequestService._to_out(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> LeaveRequestOut:
        leave_req = await LeaveRequestService._load(db, actor.company_id, request_id)
        visible = (
            actor.is_employee(leave_req.employee_id)
            or actor.can(Capability.view_all_leaves)
            or (
                actor.can(Capability.view_team_leaves)
                and actor.employee_id is not None
                and actor.employee_id == leave_req.reporting_manager_id
            )
        )
        if not visible:
            raise ForbiddenException("You cannot view this leave request.")
        return LeaveRequestService._to_out(leave_req)

    @staticmethod
    async def list_leaves(
        db: AsyncSession,
        actor: Actor,
        pagination: PaginationParams,
        *,
        scope: str = "my",
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[str] = None,
        employee_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> LeaveRequestList:
        """List requests in one of the scopes ``my``, ``team``, ``hr-pool`` or ``all``."""
        query = select(LeaveRequest).where(
            LeaveRequest.company_id == actor.company_id,
            LeaveRequest.is_deleted.is_(False),
        )
        if scope == "my":
            if actor.employee_id is None:
                raise ForbiddenException("No employee record is linked to this user.", code="no-employee-record")
            query = query.where(LeaveRequest.employee_id == actor.employee_id)
        elif scope == "team":
            actor.require(Capability.view_team_leaves)
            query = query.where(LeaveRequest.reporting_manager_id == actor.employee_id)
        elif scope == "hr-pool":
            actor.require(Capability.approve_as_hr)
            query = query.where(LeaveRequest.is_hr_fallback.is_(True))
        elif scope == "all":
            actor.require(Capability.view_all_leaves)
            if employee_id is not None:
                query = query.where(LeaveRequest.employee_id == employee_id)
        else:
            raise ValidationException({"scope": [f"Must be one of: {', '.join(LIST_SCOPES)}."]})

        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if leave_type:
            query = query.where(LeaveRequest.leave_type == leave_type.lower())
        if from_date:
            query = query.where(LeaveRequest.end_date >= from_date)
        if to_date:
            query = query.where(LeaveRequest.start_date <= to_date)

        query = query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
        rows, meta = await paginate(db, query, pagination, model=LeaveRequest)
        return LeaveRequestList(
            data=[LeaveRequestService._to_out(r) for r in rows],
            meta=meta,
        )

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        actor: Actor,
        employee_id: Optional[uuid.UUID] = None,
    ) -> list[EmployeeBalanceOut]:
        """Effective balance per active leave type for the actor or, with rights, anyone."""
        target = employee_id or actor.employee_id
        if target is None:
            raise ForbiddenException("No employee record is linked to this user.", code="no-employee-record")
        actor.require_self_or(Capability.view_any_balance, target)
        await EmployeeDirectory.get_employee(db, actor.company_id, target)
        return [
            await PolicyResolver.resolve_employee_balance(db, actor.company_id, target, lt.code)
            for lt in await LeaveTypeService.list_leave_types(db, actor.company_id)
        ]

    # ─────────────────────────────────────────────────────────────────
    # Edits
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        data: LeaveRequestUpdate,
    ) -> LeaveRequestOut:
        """Edit a pending request; dates are re-checked for overlap."""
        leave_req = await LeaveRequestService._load(db, actor.company_id, request_id)
        if not actor.is_employee(leave_req.employee_id):
            actor.require(Capability.bypass_ownership, "You can only edit your own leave requests.")
        if leave_req.status != LeaveStatus.pending:
            raise ConflictError(
                f"Only pending requests can be edited; this one is {leave_req.status.value}.",
                code="leave-not-editable",
            )

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return LeaveRequestService._to_out(leave_req)

        start_date = data.start_date or leave_req.start_date
        end_date = data.end_date or leave_req.end_date
        session = data.session or leave_req.session
        LeaveRequestService._validate_range(start_date, end_date)

        values: dict[str, Any] = {
            "start_date": start_date,
            "end_date": end_date,
            "session": session,
            "duration": compute_duration(start_date, end_date, session),
        }
        if data.leave_type:
            leave_type = await LeaveTypeService.get_by_code(db, actor.company_id, data.leave_type)
            values["leave_type_id"] = leave_type.id
            values["leave_type"] = leave_type.code
        if "reason" in changes:
            values["reason"] = data.reason
        if data.attachments is not None:
            values["attachments"] = validate_attachments(data.attachments)

        if start_date != leave_req.start_date or end_date != leave_req.end_date:
            await LeaveRequestService._ensure_no_overlap(
                db, actor, leave_req.employee_id, start_date, end_date, exclude_id=leave_req.id,
            )

        old_values = {
            "leave_type": leave_req.leave_type,
            "start_date": leave_req.start_date,
            "end_date": leave_req.end_date,
            "session": leave_req.session,
            "duration": leave_req.duration,
        }
        await LeaveRequestService._guarded_update(db, leave_req, LeaveStatus.pending, **values)
        await LeaveRequestService._audit(
            db, actor, leave_req, "update",
            old_values=old_values,
            new_values={k: v for k, v in values.items() if k != "attachments"},
        )
        return LeaveRequestService._to_out(leave_req)

    @staticmethod
    async def delete_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> None:
        """Soft delete; approved requests must be cancelled instead."""
        leave_req = await LeaveRequestService._load(db, actor.company_id, request_id)
        if not actor.is_employee(leave_req.employee_id):
            actor.require(Capability.bypass_ownership, "You can only delete your own leave requests.")
        if leave_req.status == LeaveStatus.approved:
            raise ConflictError(
                "Cannot delete an approved leave request. Cancel it instead.",
                code="approved-leave-delete",
            )

        await LeaveRequestService._guarded_update(
            db, leave_req, leave_req.status,
            is_deleted=True, deleted_at=_now(), deleted_by=actor.user_id,
        )
        await LeaveRequestService._audit(
            db, actor, leave_req, "delete",
            old_values={"is_deleted": False},
            new_values={"is_deleted": True},
        )
        logger.info("Leave request %s deleted by %s", leave_req.id, actor.user_id)

    # ─────────────────────────────────────────────────────────────────
    # Transitions
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        comments: Optional[str] = None,
    ) -> LeaveRequestOut:
        """pending → approved, debiting the ledger in the same transaction."""
        leave_req = await LeaveRequestService._load(db, actor.company_id, request_id)
        LeaveRequestService._ensure_can_decide(actor, leave_req)
        LeaveRequestService._ensure_pending(leave_req, "approve")

        available = (
            await PolicyResolver.resolve_employee_balance(
                db, leave_req.company_id, leave_req.employee_id, leave_req.leave_type,
            )
        ).balance
        if available < leave_req.duration:
            raise InsufficientBalanceError(leave_req.leave_type, available, leave_req.duration)

        await LeaveRequestService._guarded_update(
            db, leave_req, LeaveStatus.pending,
            status=LeaveStatus.approved,
            approved_by=actor.user_id,
            approved_at=_now(),
            approval_comments=comments,
        )
        try:
            entry = await LedgerService.record_usage(
                db,
                company_id=leave_req.company_id,
                employee_id=leave_req.employee_id,
                leave_type=leave_req.leave_type,
                days=leave_req.duration,
                leave_request_id=leave_req.id,
                start_date=leave_req.start_date,
                end_date=leave_req.end_date,
                changed_by=actor.user_id,
            )
        except AppException:
            logger.error("Ledger debit failed for approved leave %s", leave_req.id, exc_info=True)
            raise

        await LeaveRequestService._audit(
            db, actor, leave_req, "approve",
            old_values={"status": LeaveStatus.pending},
            new_values={"status": LeaveStatus.approved, "balance_after": entry.balance_after},
        )
        await notify_leave_approved(db, leave_req)
        logger.info(
            "Leave request %s approved by %s; %s balance now %s",
            leave_req.id, actor.user_id, leave_req.leave_type, entry.balance_after,
        )
        return LeaveRequestService._to_out(leave_req)

    @staticmethod
    async def reject_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        reason: Optional[str],
    ) -> LeaveRequestOut:
        """pending → rejected; a reason is mandatory."""
        if not (reason or "").strip():
            raise ValidationException(
                {"reason": ["A reason is required to reject a leave request."]},
                code="reason-required",
            )
        leave_req = await LeaveRequestService._load(db, actor.company_id, request_id)
        LeaveRequestService._ensure_can_decide(actor, leave_req)
        LeaveRequestService._ensure_pending(leave_req, "reject")

        await LeaveRequestService._guarded_update(
            db, leave_req, LeaveStatus.pending,
            status=LeaveStatus.rejected,
            rejected_by=actor.user_id,
            rejected_at=_now(),
            rejection_reason=reason.strip(),
        )
        await LeaveRequestService._audit(
            db, actor, leave_req, "reject",
            old_values={"status": LeaveStatus.pending},
            new_values={"status": LeaveStatus.rejected, "reason": leave_req.rejection_reason},
        )
        await notify_leave_rejected(db, leave_req, leave_req.rejection_reason)
        logger.info("Leave request %s rejected by %s", leave_req.id, actor.user_id)
        return LeaveRequestService._to_out(leave_req)

    @staticmethod
    async def cancel_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """pending/approved → cancelled; approved leave is credited back."""
        leave_req = await LeaveRequestService._load(db, actor.company_id, request_id)
        is_owner = actor.is_employee(leave_req.employee_id)
        if not (is_owner or actor.can(Capability.cancel_any)):
            raise ForbiddenException("You can only cancel your own leave requests.", code="not-owner")

        previous = leave_req.status
        if previous == LeaveStatus.cancelled:
            raise ConflictError("Leave request is already cancelled.", code="already-cancelled")
        if previous == LeaveStatus.rejected:
            raise ConflictError("Cannot cancel a rejected leave request.", code="already-rejected")
        if previous == LeaveStatus.approved and leave_req.start_date <= _today():
            raise ConflictError(
                "Cannot cancel leave that has already started. Please contact HR.",
                code="leave-already-started",
            )

        await LeaveRequestService._guarded_update(
            db, leave_req, previous,
            status=LeaveStatus.cancelled,
            cancelled_by=actor.user_id,
            cancelled_at=_now(),
            cancellation_reason=reason,
        )
        new_values: dict[str, Any] = {"status": LeaveStatus.cancelled}
        if previous == LeaveStatus.approved:
            entry = await LedgerService.record_restoration(
                db,
                company_id=leave_req.company_id,
                employee_id=leave_req.employee_id,
                leave_type=leave_req.leave_type,
                days=leave_req.duration,
                leave_request_id=leave_req.id,
                description=f"Cancelled leave {leave_req.start_date} to {leave_req.end_date}",
                changed_by=actor.user_id,
            )
            new_values["balance_after"] = entry.balance_after

        await LeaveRequestService._audit(
            db, actor, leave_req, "cancel",
            old_values={"status": previous},
            new_values=new_values,
        )
        await notify_leave_cancelled(db, leave_req, is_owner)
        logger.info(
            "Leave request %s cancelled by %s (was %s)",
            leave_req.id, actor.user_id, previous.value,
        )
        return LeaveRequestService._to_out(leave_req)
