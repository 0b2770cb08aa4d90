"""Enums and constants for HR Ops — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr = "hr"
    subadmin = "subadmin"
    admin = "admin"
    superadmin = "superadmin"


# Roles allowed to approve / reject / bulk-update leave requests
APPROVER_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.subadmin, UserRole.admin, UserRole.superadmin}
)

# Roles allowed to read company-wide leave data
REVIEWER_ROLES: frozenset[UserRole] = APPROVER_ROLES | {UserRole.hr, UserRole.manager}

# Roles allowed to edit a company's leave policy
POLICY_ADMIN_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.hr, UserRole.admin, UserRole.superadmin}
)


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# Statuses that consume balance and block overlapping requests
ACTIVE_LEAVE_STATUSES: tuple[LeaveStatus, ...] = (
    LeaveStatus.pending,
    LeaveStatus.approved,
)


class HalfDayType(str, enum.Enum):
    first_half = "first-half"
    second_half = "second-half"


class BulkAction(str, enum.Enum):
    approve = "approve"
    reject = "reject"


# ── Calendar ────────────────────────────────────────────────────────

# Weekday indices are 0=Sunday … 6=Saturday throughout the policy API
SUNDAY = 0
SATURDAY = 6
DEFAULT_WEEK_OFF: tuple[int, ...] = (SUNDAY, SATURDAY)


# ── Misc ────────────────────────────────────────────────────────────

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
