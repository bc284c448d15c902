"""Common module — shared utilities for the leave core."""

from hrleave.common.audit import AuditMixin, AuditTrail, create_audit_entry
from hrleave.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ROLE_CAPABILITIES,
    Capability,
    LeaveSession,
    LeaveStatus,
    LedgerTransactionType,
    NotificationType,
    PolicySource,
    UserRole,
)
from hrleave.common.exceptions import (
    AppException,
    ConflictError,
    DuplicateException,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from hrleave.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditMixin",
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "Capability",
    "LeaveSession",
    "LeaveStatus",
    "LedgerTransactionType",
    "NotificationType",
    "PolicySource",
    "UserRole",
    "ROLE_CAPABILITIES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "DuplicateException",
    "ForbiddenException",
    "InsufficientBalanceError",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
