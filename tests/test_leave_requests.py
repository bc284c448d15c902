"""Leave request lifecycle — filing, routing, approval, rejection, cancellation.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrleave.common.constants import LedgerTransactionType, LeaveSession, LeaveStatus
from hrleave.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
)
from hrleave.common.pagination import PaginationParams
from hrleave.core_hr.models import EmployeeLeaveBalance
from hrleave.leave.models import LeaveRequest
from hrleave.leave.schemas import AttachmentMeta, LeaveRequestCreate, LeaveRequestUpdate
from hrleave.leave.service import LeaveRequestService, compute_duration, validate_attachments
from hrleave.ledger.models import LeaveLedgerEntry
from hrleave.notifications.models import Notification
from tests.conftest import actor_for, set_projection, system_actor

BASE = date.today() + timedelta(days=30)


def _day(n: int) -> date:
    """Day *n* of a month-long window that starts safely in the future."""
    return BASE + timedelta(days=n - 1)


def _request(start: int, end: int, leave_type: str = "casual", **kw) -> LeaveRequestCreate:
    return LeaveRequestCreate(
        leave_type=leave_type, start_date=_day(start), end_date=_day(end), **kw,
    )


async def _file(db: AsyncSession, employee, start: int, end: int, **kw):
    return await LeaveRequestService.create_leave(db, actor_for(employee), _request(start, end, **kw))


async def _ledger(db: AsyncSession, request_id) -> list[LeaveLedgerEntry]:
    result = await db.execute(
        select(LeaveLedgerEntry)
        .where(LeaveLedgerEntry.leave_request_id == request_id)
        .order_by(LeaveLedgerEntry.sequence)
    )
    return list(result.scalars().all())


async def _notifications_for(db: AsyncSession, employee_id) -> list[Notification]:
    result = await db.execute(select(Notification).where(Notification.recipient_id == employee_id))
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# Duration and attachments
# ═════════════════════════════════════════════════════════════════════


class TestDuration:

    def test_full_day_range_is_inclusive(self):
        assert compute_duration(date(2025, 3, 10), date(2025, 3, 14), LeaveSession.full_day) == 5

    def test_single_half_day(self):
        assert compute_duration(date(2025, 3, 10), date(2025, 3, 10), LeaveSession.first_half) == Decimal("0.5")

    def test_half_day_over_several_days(self):
        assert compute_duration(date(2025, 3, 10), date(2025, 3, 12), LeaveSession.second_half) == Decimal("2.5")


class TestAttachments:

    def test_accepts_allowed_types(self):
        out = validate_attachments([
            AttachmentMeta(filename="note.pdf", content_type="application/pdf", size_bytes=1024),
        ])
        assert out[0]["filename"] == "note.pdf"

    def test_rejects_oversized_and_unknown_type(self):
        with pytest.raises(ValidationException) as exc:
            validate_attachments([
                AttachmentMeta(filename="scan.pdf", content_type="application/pdf", size_bytes=50 * 1024 * 1024),
                AttachmentMeta(filename="run.exe", content_type="application/x-msdownload", size_bytes=10),
            ])
        assert exc.value.code == "invalid-attachment"
        assert len(exc.value.errors["attachments"]) == 2


# ═════════════════════════════════════════════════════════════════════
# Filing and routing
# ═════════════════════════════════════════════════════════════════════


class TestCreateLeave:

    async def test_routes_to_reporting_manager(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 3)

        assert out.status == LeaveStatus.pending
        assert out.duration == 3
        assert out.reporting_manager_id == manager.id
        assert out.is_hr_fallback is False
        assert out.balance_at_request == Decimal("12")

        notes = await _notifications_for(db, manager.id)
        assert len(notes) == 1
        assert notes[0].entity_id == out.id

    async def test_no_manager_routes_to_hr_pool(self, db, leave_types, orphan, hr_user, second_hr_user):
        out = await _file(db, orphan, 1, 1)

        assert out.is_hr_fallback is True
        assert out.reporting_manager_id is None
        assert len(await _notifications_for(db, hr_user.id)) == 1
        assert len(await _notifications_for(db, second_hr_user.id)) == 1

    async def test_deactivated_manager_routes_to_hr_pool(self, db, leave_types, employee, manager, hr_user):
        manager.is_active = False
        await db.flush()

        out = await _file(db, employee, 1, 2)
        assert out.is_hr_fallback is True
        assert out.reporting_manager_id is None
        assert len(await _notifications_for(db, hr_user.id)) == 1
        assert await _notifications_for(db, manager.id) == []

    async def test_overlapping_request_is_rejected(self, db, leave_types, employee):
        first = await _file(db, employee, 10, 15)

        with pytest.raises(ConflictError) as exc:
            await _file(db, employee, 14, 20)
        assert exc.value.code == "overlapping-leave"
        assert exc.value.context["conflicting_request_id"] == str(first.id)

        second = await _file(db, employee, 16, 20)
        assert second.start_date == _day(16)

    async def test_rejected_request_does_not_block_dates(self, db, leave_types, employee, manager):
        first = await _file(db, employee, 10, 15)
        await LeaveRequestService.reject_leave(db, actor_for(manager), first.id, "Team offsite")

        again = await _file(db, employee, 10, 15)
        assert again.status == LeaveStatus.pending

    async def test_manager_role_skips_overlap_check(self, db, leave_types, manager):
        await _file(db, manager, 1, 5)
        overlapping = await _file(db, manager, 3, 4)
        assert overlapping.status == LeaveStatus.pending

    async def test_end_before_start(self, db, leave_types, employee):
        with pytest.raises(ValidationException) as exc:
            await _file(db, employee, 5, 3)
        assert exc.value.code == "invalid-date-range"

    async def test_self_as_manager(self, db, leave_types, employee):
        with pytest.raises(ValidationException) as exc:
            await _file(db, employee, 1, 1, reporting_manager_id=employee.employee_code)
        assert exc.value.code == "self-manager"

    async def test_unknown_manager(self, db, leave_types, employee):
        with pytest.raises(ValidationException) as exc:
            await _file(db, employee, 1, 1, reporting_manager_id="EMP-NOPE")
        assert exc.value.code == "manager-not-found"

    async def test_manager_override_by_external_user_id(self, db, leave_types, orphan, other_manager):
        out = await _file(db, orphan, 1, 1, reporting_manager_id=other_manager.external_user_id)
        assert out.reporting_manager_id == other_manager.id
        assert out.is_hr_fallback is False

    async def test_unknown_leave_type(self, db, leave_types, employee):
        with pytest.raises(NotFoundException):
            await _file(db, employee, 1, 1, leave_type="sabbatical")

    async def test_employee_cannot_file_for_someone_else(self, db, leave_types, employee, orphan):
        with pytest.raises(ForbiddenException):
            await LeaveRequestService.create_leave(
                db, actor_for(employee), _request(1, 2, employee_id=orphan.id),
            )

    async def test_hr_files_on_behalf(self, db, leave_types, hr_user, employee, manager):
        out = await LeaveRequestService.create_leave(
            db, actor_for(hr_user), _request(1, 2, employee_id=employee.id),
        )
        assert out.employee_id == employee.id
        assert out.reporting_manager_id == manager.id

    async def test_service_account_needs_employee_id(self, db, leave_types):
        with pytest.raises(ForbiddenException) as exc:
            await LeaveRequestService.create_leave(db, system_actor(), _request(1, 1))
        assert exc.value.code == "no-employee-record"

    async def test_hr_fallback_flag_is_frozen(self, db, leave_types, orphan):
        out = await _file(db, orphan, 1, 1)
        leave_req = await db.get(LeaveRequest, out.id)
        with pytest.raises(ValueError):
            leave_req.is_hr_fallback = False

    async def test_notification_failure_does_not_block_filing(self, db, leave_types, employee):
        with patch(
            "hrleave.notifications.service.NotificationService.create_notification",
            new_callable=AsyncMock,
            side_effect=RuntimeError("mail relay down"),
        ):
            out = await _file(db, employee, 1, 1)
        assert (await db.get(LeaveRequest, out.id)).status == LeaveStatus.pending


# ═════════════════════════════════════════════════════════════════════
# Approval
# ═════════════════════════════════════════════════════════════════════


class TestApproveLeave:

    async def test_assigned_manager_approves_and_ledger_is_debited(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 3)
        approved = await LeaveRequestService.approve_leave(db, actor_for(manager), out.id, "Enjoy")

        assert approved.status == LeaveStatus.approved
        assert approved.approved_by == manager.external_user_id
        assert approved.approval_comments == "Enjoy"

        entries = await _ledger(db, out.id)
        assert [e.transaction_type for e in entries] == [LedgerTransactionType.used]
        assert entries[0].amount == Decimal("-3")
        assert entries[0].balance_before == Decimal("12")
        assert entries[0].balance_after == Decimal("9")

    async def test_other_manager_is_forbidden(self, db, leave_types, employee, other_manager):
        out = await _file(db, employee, 1, 1)
        with pytest.raises(ForbiddenException) as exc:
            await LeaveRequestService.approve_leave(db, actor_for(other_manager), out.id)
        assert exc.value.code == "not-assigned-manager"

    async def test_plain_employee_is_forbidden(self, db, leave_types, employee, orphan):
        out = await _file(db, employee, 1, 1)
        with pytest.raises(ForbiddenException):
            await LeaveRequestService.approve_leave(db, actor_for(orphan), out.id)

    async def test_manager_cannot_approve_hr_pool_request(self, db, leave_types, orphan, manager, hr_user):
        out = await _file(db, orphan, 1, 1)
        with pytest.raises(ForbiddenException) as exc:
            await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)
        assert exc.value.code == "hr-pool-only"

        approved = await LeaveRequestService.approve_leave(db, actor_for(hr_user), out.id)
        assert approved.status == LeaveStatus.approved

    async def test_any_hr_member_can_take_hr_pool_request(self, db, leave_types, orphan, hr_user, second_hr_user):
        out = await _file(db, orphan, 1, 1)
        approved = await LeaveRequestService.approve_leave(db, actor_for(second_hr_user), out.id)
        assert approved.approved_by == second_hr_user.external_user_id

    async def test_admin_approves_regardless_of_routing(self, db, leave_types, employee, admin_user):
        out = await _file(db, employee, 1, 1)
        approved = await LeaveRequestService.approve_leave(db, actor_for(admin_user), out.id)
        assert approved.status == LeaveStatus.approved

    async def test_self_approval_is_blocked_even_for_hr(self, db, leave_types, hr_user, second_hr_user):
        out = await _file(db, hr_user, 1, 1)
        assert out.is_hr_fallback is True

        with pytest.raises(ForbiddenException) as exc:
            await LeaveRequestService.approve_leave(db, actor_for(hr_user), out.id)
        assert exc.value.code == "self-approval"

        approved = await LeaveRequestService.approve_leave(db, actor_for(second_hr_user), out.id)
        assert approved.status == LeaveStatus.approved

    async def test_second_approval_conflicts(self, db, leave_types, employee, manager, hr_user):
        out = await _file(db, employee, 1, 2)
        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)

        with pytest.raises(ConflictError) as exc:
            await LeaveRequestService.approve_leave(db, actor_for(hr_user), out.id)
        assert exc.value.code == "leave-not-pending"
        assert len(await _ledger(db, out.id)) == 1

    async def test_stale_status_write_is_refused(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 1)
        leave_req = await db.get(LeaveRequest, out.id)
        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)

        with pytest.raises(ConflictError) as exc:
            await LeaveRequestService._guarded_update(
                db, leave_req, LeaveStatus.pending, status=LeaveStatus.rejected,
            )
        assert exc.value.code == "leave-state-changed"
        assert (await db.get(LeaveRequest, out.id)).status == LeaveStatus.approved

    async def test_insufficient_balance_keeps_request_pending(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 15)
        with pytest.raises(InsufficientBalanceError) as exc:
            await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)
        assert exc.value.shortfall == Decimal("3")

        assert (await db.get(LeaveRequest, out.id)).status == LeaveStatus.pending
        assert await _ledger(db, out.id) == []

    async def test_employee_is_notified(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 1)
        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)
        titles = [n.title for n in await _notifications_for(db, employee.id)]
        assert "Leave Request Approved" in titles


# ═════════════════════════════════════════════════════════════════════
# Rejection
# ═════════════════════════════════════════════════════════════════════


class TestRejectLeave:

    async def test_reason_is_required(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 1)
        with pytest.raises(ValidationException) as exc:
            await LeaveRequestService.reject_leave(db, actor_for(manager), out.id, "  ")
        assert exc.value.code == "reason-required"

    async def test_reject_writes_no_ledger_entry(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 2)
        rejected = await LeaveRequestService.reject_leave(db, actor_for(manager), out.id, "Release week")

        assert rejected.status == LeaveStatus.rejected
        assert rejected.rejection_reason == "Release week"
        assert await _ledger(db, out.id) == []

    async def test_cannot_reject_approved(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 1)
        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)
        with pytest.raises(ConflictError):
            await LeaveRequestService.reject_leave(db, actor_for(manager), out.id, "Changed my mind")


# ═════════════════════════════════════════════════════════════════════
# Cancellation
# ═════════════════════════════════════════════════════════════════════


class TestCancelLeave:

    async def test_cancel_approved_restores_balance(self, db, leave_types, employee, manager):
        await set_projection(db, employee, "casual", total=Decimal("10"), used=Decimal("2"))
        out = await _file(db, employee, 1, 3)

        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)
        entries = await _ledger(db, out.id)
        assert entries[-1].amount == Decimal("-3")
        assert entries[-1].balance_after == Decimal("5")

        cancelled = await LeaveRequestService.cancel_leave(db, actor_for(employee), out.id, "Trip moved")
        assert cancelled.status == LeaveStatus.cancelled

        entries = await _ledger(db, out.id)
        assert entries[-1].transaction_type == LedgerTransactionType.restored
        assert entries[-1].amount == Decimal("3")
        assert entries[-1].balance_after == Decimal("8")

        projection = (
            await db.execute(
                select(EmployeeLeaveBalance).where(
                    EmployeeLeaveBalance.employee_id == employee.id,
                    EmployeeLeaveBalance.leave_type == "casual",
                )
            )
        ).scalars().one()
        assert projection.balance == Decimal("8")
        assert projection.used == Decimal("2")

    async def test_cancel_pending_touches_no_ledger(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 2)
        await LeaveRequestService.cancel_leave(db, actor_for(employee), out.id)

        assert await _ledger(db, out.id) == []
        titles = [n.title for n in await _notifications_for(db, manager.id)]
        assert "Leave Request Cancelled" in titles

    async def test_started_leave_cannot_be_cancelled(self, db, leave_types, employee, manager, monkeypatch):
        out = await _file(db, employee, 1, 3)
        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)

        monkeypatch.setattr("hrleave.leave.service._today", lambda: _day(2))
        with pytest.raises(ConflictError) as exc:
            await LeaveRequestService.cancel_leave(db, actor_for(employee), out.id)
        assert exc.value.code == "leave-already-started"

    async def test_only_owner_or_privileged(self, db, leave_types, employee, orphan, hr_user):
        out = await _file(db, employee, 1, 1)
        with pytest.raises(ForbiddenException) as exc:
            await LeaveRequestService.cancel_leave(db, actor_for(orphan), out.id)
        assert exc.value.code == "not-owner"

        cancelled = await LeaveRequestService.cancel_leave(db, actor_for(hr_user), out.id, "Duplicate")
        assert cancelled.cancelled_by == hr_user.external_user_id
        titles = [n.title for n in await _notifications_for(db, employee.id)]
        assert "Leave Request Cancelled" in titles

    async def test_terminal_states(self, db, leave_types, employee, manager):
        cancelled = await _file(db, employee, 1, 1)
        await LeaveRequestService.cancel_leave(db, actor_for(employee), cancelled.id)
        with pytest.raises(ConflictError) as exc:
            await LeaveRequestService.cancel_leave(db, actor_for(employee), cancelled.id)
        assert exc.value.code == "already-cancelled"

        rejected = await _file(db, employee, 5, 5)
        await LeaveRequestService.reject_leave(db, actor_for(manager), rejected.id, "No cover")
        with pytest.raises(ConflictError) as exc:
            await LeaveRequestService.cancel_leave(db, actor_for(employee), rejected.id)
        assert exc.value.code == "already-rejected"


# ═════════════════════════════════════════════════════════════════════
# Edits, deletion and reads
# ═════════════════════════════════════════════════════════════════════


class TestEditAndDelete:

    async def test_update_pending_recomputes_duration(self, db, leave_types, employee):
        out = await _file(db, employee, 1, 2)
        updated = await LeaveRequestService.update_leave(
            db, actor_for(employee), out.id,
            LeaveRequestUpdate(end_date=_day(4), reason="Longer trip"),
        )
        assert updated.duration == 4
        assert updated.reason == "Longer trip"

    async def test_update_overlap_ignores_itself(self, db, leave_types, employee):
        out = await _file(db, employee, 1, 3)
        await _file(db, employee, 10, 12)

        shifted = await LeaveRequestService.update_leave(
            db, actor_for(employee), out.id, LeaveRequestUpdate(start_date=_day(2)),
        )
        assert shifted.duration == 2
        with pytest.raises(ConflictError):
            await LeaveRequestService.update_leave(
                db, actor_for(employee), out.id, LeaveRequestUpdate(end_date=_day(10)),
            )

    async def test_approved_request_is_not_editable(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 1)
        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)
        with pytest.raises(ConflictError) as exc:
            await LeaveRequestService.update_leave(
                db, actor_for(employee), out.id, LeaveRequestUpdate(reason="x"),
            )
        assert exc.value.code == "leave-not-editable"

    async def test_delete_pending_then_gone(self, db, leave_types, employee):
        out = await _file(db, employee, 1, 1)
        await LeaveRequestService.delete_leave(db, actor_for(employee), out.id)
        with pytest.raises(NotFoundException):
            await LeaveRequestService.get_leave(db, actor_for(employee), out.id)

    async def test_delete_approved_is_refused(self, db, leave_types, employee, manager):
        out = await _file(db, employee, 1, 1)
        await LeaveRequestService.approve_leave(db, actor_for(manager), out.id)
        with pytest.raises(ConflictError) as exc:
            await LeaveRequestService.delete_leave(db, actor_for(employee), out.id)
        assert exc.value.code == "approved-leave-delete"


class TestReads:

    async def test_visibility(self, db, leave_types, employee, manager, other_manager, orphan, hr_user):
        out = await _file(db, employee, 1, 1)

        for viewer in (employee, manager, hr_user):
            assert (await LeaveRequestService.get_leave(db, actor_for(viewer), out.id)).id == out.id
        for outsider in (orphan, other_manager):
            with pytest.raises(ForbiddenException):
                await LeaveRequestService.get_leave(db, actor_for(outsider), out.id)

    async def test_list_scopes(self, db, leave_types, employee, manager, orphan, hr_user):
        mine = await _file(db, employee, 1, 1)
        pooled = await _file(db, orphan, 1, 1)
        page = PaginationParams(page=1, page_size=50, sort=None)

        my = await LeaveRequestService.list_leaves(db, actor_for(employee), page, scope="my")
        assert [r.id for r in my.data] == [mine.id]

        team = await LeaveRequestService.list_leaves(db, actor_for(manager), page, scope="team")
        assert [r.id for r in team.data] == [mine.id]

        pool = await LeaveRequestService.list_leaves(db, actor_for(hr_user), page, scope="hr-pool")
        assert [r.id for r in pool.data] == [pooled.id]

        everything = await LeaveRequestService.list_leaves(db, actor_for(hr_user), page, scope="all")
        assert everything.meta.total == 2

        with pytest.raises(ForbiddenException):
            await LeaveRequestService.list_leaves(db, actor_for(employee), page, scope="all")
        with pytest.raises(ValidationException):
            await LeaveRequestService.list_leaves(db, actor_for(hr_user), page, scope="everyone")

    async def test_list_filters(self, db, leave_types, employee, manager):
        first = await _file(db, employee, 1, 1)
        await _file(db, employee, 10, 10, leave_type="sick")
        await LeaveRequestService.approve_leave(db, actor_for(manager), first.id)
        page = PaginationParams(page=1, page_size=50, sort=None)

        approved = await LeaveRequestService.list_leaves(
            db, actor_for(employee), page, status=LeaveStatus.approved,
        )
        assert [r.id for r in approved.data] == [first.id]

        sick = await LeaveRequestService.list_leaves(db, actor_for(employee), page, leave_type="SICK")
        assert [r.leave_type for r in sick.data] == ["sick"]

        window = await LeaveRequestService.list_leaves(
            db, actor_for(employee), page, from_date=_day(5), to_date=_day(20),
        )
        assert [r.start_date for r in window.data] == [_day(10)]

    async def test_balances_for_self_and_hr(self, db, leave_types, employee, orphan, hr_user):
        mine = await LeaveRequestService.get_balances(db, actor_for(employee))
        assert {b.leave_type: b.balance for b in mine} == {
            "casual": Decimal("12"), "earned": Decimal("15"), "sick": Decimal("12"),
        }

        with pytest.raises(ForbiddenException):
            await LeaveRequestService.get_balances(db, actor_for(orphan), employee.id)
        assert len(await LeaveRequestService.get_balances(db, actor_for(hr_user), employee.id)) == 3
