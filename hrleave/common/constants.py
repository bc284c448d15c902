"""Enums and constants for the leave core — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr = "hr"
    admin = "admin"
    superadmin = "superadmin"


class Capability(str, enum.Enum):
    """Fine-grained rights checked by transitions and routes."""

    approve_as_manager = "approve_as_manager"
    approve_as_hr = "approve_as_hr"
    approve_any = "approve_any"
    cancel_any = "cancel_any"
    bypass_ownership = "bypass_ownership"
    bypass_overlap_check = "bypass_overlap_check"
    file_on_behalf = "file_on_behalf"
    view_team_leaves = "view_team_leaves"
    view_all_leaves = "view_all_leaves"
    view_any_balance = "view_any_balance"
    manage_policies = "manage_policies"
    manage_leave_types = "manage_leave_types"
    manage_ledger = "manage_ledger"
    run_carry_forward = "run_carry_forward"
    run_encashment = "run_encashment"


_HR_CAPABILITIES = frozenset({
    Capability.approve_as_manager,
    Capability.approve_as_hr,
    Capability.cancel_any,
    Capability.bypass_ownership,
    Capability.bypass_overlap_check,
    Capability.file_on_behalf,
    Capability.view_team_leaves,
    Capability.view_all_leaves,
    Capability.view_any_balance,
    Capability.manage_policies,
    Capability.manage_leave_types,
    Capability.manage_ledger,
    Capability.run_carry_forward,
    Capability.run_encashment,
})

ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.employee: frozenset(),
    UserRole.manager: frozenset({
        Capability.approve_as_manager,
        Capability.bypass_overlap_check,
        Capability.view_team_leaves,
    }),
    UserRole.hr: _HR_CAPABILITIES,
    UserRole.admin: frozenset(Capability),
    UserRole.superadmin: frozenset(Capability),
}


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"
    on_hold = "on-hold"


class LeaveSession(str, enum.Enum):
    full_day = "Full Day"
    first_half = "First Half"
    second_half = "Second Half"


class LedgerTransactionType(str, enum.Enum):
    opening = "opening"
    allocated = "allocated"
    used = "used"
    restored = "restored"
    carry_forward = "carry_forward"
    encashed = "encashed"
    adjustment = "adjustment"
    custom_adjustment = "custom_adjustment"
    expired = "expired"


class PolicySource(str, enum.Enum):
    custom = "custom"
    default = "default"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    alert = "alert"


# ── Attachments ─────────────────────────────────────────────────────

ALLOWED_ATTACHMENT_MIME_TYPES = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/jpg",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
})
MAX_ATTACHMENTS_PER_REQUEST = 5

# ── Misc constants ──────────────────────────────────────────────────

DATE_FORMAT = "%Y-%m-%d"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
MAX_LEDGER_HISTORY = 500
DEFAULT_LEDGER_HISTORY = 100
