"""Common module — shared utilities for HR Ops."""

from hrops.common.audit import AuditTrail, create_audit_entry
from hrops.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    APPROVER_ROLES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_WEEK_OFF,
    MAX_PAGE_SIZE,
    POLICY_ADMIN_ROLES,
    REVIEWER_ROLES,
    BulkAction,
    HalfDayType,
    LeaveStatus,
    UserRole,
)
from hrops.common.exceptions import (
    AppException,
    DocumentRequiredException,
    ForbiddenException,
    InvalidLeaveTypeException,
    InvalidTransitionException,
    NotFoundException,
    OverlapException,
    PolicyConflictException,
    PolicyNotFoundException,
    QuotaExceededException,
    UploadException,
    ValidationException,
    format_days,
    register_exception_handlers,
)
from hrops.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "BulkAction",
    "HalfDayType",
    "LeaveStatus",
    "UserRole",
    "ACTIVE_LEAVE_STATUSES",
    "APPROVER_ROLES",
    "POLICY_ADMIN_ROLES",
    "REVIEWER_ROLES",
    "DEFAULT_WEEK_OFF",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "DocumentRequiredException",
    "ForbiddenException",
    "InvalidLeaveTypeException",
    "InvalidTransitionException",
    "NotFoundException",
    "OverlapException",
    "PolicyConflictException",
    "PolicyNotFoundException",
    "QuotaExceededException",
    "UploadException",
    "ValidationException",
    "format_days",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
