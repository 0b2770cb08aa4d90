"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request / *Item    → request bodies (write)
  - *Out / *Result      → response bodies (read)

Presence and shape checks on the apply payload belong to ``LeaveService``
and surface as ``ValidationException`` with a specific reason.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from hrops.common.constants import BulkAction, LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class LeaveBreakupItem(BaseModel):
    """One slice of a leave request. ``leave_type`` is a type name or short code."""

    model_config = ConfigDict(from_attributes=True)

    leave_type: Optional[str] = None
    short_code: Optional[str] = None
    days: Optional[Decimal] = None


class DocumentRef(BaseModel):
    """An uploaded supporting document."""

    name: str
    url: str


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Apply
# ═════════════════════════════════════════════════════════════════════


class LeaveApplyRequest(BaseModel):
    """Payload for applying a leave request."""

    employee_id: Optional[uuid.UUID] = None
    company_id: Optional[uuid.UUID] = None
    start_date: Optional[date] = Field(None, description="Leave start date (inclusive)")
    end_date: Optional[date] = Field(None, description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000)
    leave_breakup: list[LeaveBreakupItem] = Field(default_factory=list)
    is_half_day: bool = False
    half_day_type: Optional[str] = Field(
        None, description="first-half | second-half; required when is_half_day"
    )
    documents: list[DocumentRef] = Field(
        default_factory=list,
        description="Documents already uploaded to storage",
    )


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveBreakupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_type: str
    short_code: str
    days: Decimal


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    company_id: uuid.UUID
    start_date: date
    end_date: date
    total_days: Decimal
    reason: str
    is_half_day: bool = False
    half_day_type: Optional[str] = None
    leave_breakup: list[LeaveBreakupOut] = Field(
        default_factory=list, validation_alias="breakup"
    )
    documents: list[DocumentRef] = Field(default_factory=list)
    status: LeaveStatus
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    approver_comment: Optional[str] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave Approve / Reject / Cancel / Bulk
# ═════════════════════════════════════════════════════════════════════


class LeaveApproveRequest(BaseModel):
    """Payload for approving a leave request."""

    comment: Optional[str] = Field(None, max_length=500)


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    rejection_reason: Optional[str] = Field(None, max_length=500)


class BulkUpdateRequest(BaseModel):
    """Approve or reject several leave requests at once."""

    ids: list[uuid.UUID] = Field(..., min_length=1)
    action: BulkAction
    comment: Optional[str] = Field(None, max_length=500)
    rejection_reason: Optional[str] = Field(None, max_length=500)


class BulkItemResult(BaseModel):
    id: uuid.UUID
    success: bool
    status: Optional[LeaveStatus] = None
    error: Optional[str] = None


class BulkUpdateResult(BaseModel):
    results: list[BulkItemResult]
    succeeded: int
    failed: int


# ═════════════════════════════════════════════════════════════════════
# Summary / Statistics
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeUsage(BaseModel):
    """Consumption of one leave type inside the current policy windows."""

    leave_type: str
    short_code: str
    year_start: date
    year_end: date
    used_this_year: Decimal
    remaining_this_year: Optional[Decimal] = None
    month_start: date
    month_end: date
    used_this_month: Decimal
    remaining_this_month: Optional[Decimal] = None
    pending_days: Decimal = Decimal("0")


class LeaveSummaryOut(BaseModel):
    employee_id: uuid.UUID
    company_id: uuid.UUID
    as_of: date
    leave_types: list[LeaveTypeUsage]


class LeaveStatisticsOut(BaseModel):
    """Company-wide leave figures for one policy year."""

    company_id: uuid.UUID
    year: int
    period_start: date
    period_end: date
    total_requests: int
    by_status: dict[str, int]
    approved_days_by_type: dict[str, Decimal]
