"""Leave router — apply, approve/reject/cancel, bulk update, listings, summary.

All endpoints require authentication. Transition and company-wide endpoints
enforce role checks; employees may only act on their own requests.
"""


import json
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrops.auth.dependencies import (
    CurrentUser,
    company_scope,
    ensure_company_access,
    get_current_user,
    require_role,
)
from hrops.common.constants import APPROVER_ROLES, REVIEWER_ROLES, LeaveStatus
from hrops.common.exceptions import ForbiddenException, ValidationException
from hrops.common.pagination import PaginatedResponse, PaginationParams
from hrops.common.rate_limit import limiter
from hrops.config import settings
from hrops.database import get_db, get_session_factory
from hrops.leave.ledger import BalanceLedger
from hrops.leave.schemas import (
    BulkUpdateRequest,
    BulkUpdateResult,
    LeaveApplyRequest,
    LeaveApproveRequest,
    LeaveRejectRequest,
    LeaveRequestOut,
    LeaveStatisticsOut,
    LeaveSummaryOut,
)
from hrops.leave.service import LeaveService
from hrops.leave.storage import DocumentStorage, IncomingDocument, get_document_storage
from hrops.leave.workflow import ApprovalWorkflow
from hrops.policy.service import PolicyService

router = APIRouter(prefix="", tags=["leave"])

_approver = require_role(*APPROVER_ROLES)
_reviewer = require_role(*REVIEWER_ROLES)


def _scope_application(body: LeaveApplyRequest, user: CurrentUser) -> LeaveApplyRequest:
    """Fill the applicant from the token; only approvers may apply for someone else."""
    updates = {}
    if body.employee_id is None:
        updates["employee_id"] = user.employee_id
    if body.company_id is None and user.company_id is not None:
        updates["company_id"] = user.company_id
    body = body.model_copy(update=updates)

    if body.employee_id != user.employee_id and not user.has_role(*APPROVER_ROLES):
        raise ForbiddenException("You can only apply for leave for yourself.")
    if body.company_id is not None:
        ensure_company_access(user, body.company_id)
    return body


def _ensure_self_or_reviewer(user: CurrentUser, employee_id: uuid.UUID) -> None:
    if user.employee_id != employee_id and not user.has_role(*REVIEWER_ROLES):
        raise ForbiddenException("You can only view your own leave data.")


# ── POST /leaves/apply ──────────────────────────────────────────────

@router.post(
    "/leaves/apply",
    response_model=LeaveRequestOut,
    status_code=201,
)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def apply_leave(
    request: Request,
    body: LeaveApplyRequest,
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Apply for leave. Validates policy, quotas, documents and overlap."""
    data = _scope_application(body, user)
    return await LeaveService.submit_leave(data, session_factory=session_factory)


# ── POST /leaves/apply-with-documents ───────────────────────────────

@router.post(
    "/leaves/apply-with-documents",
    response_model=LeaveRequestOut,
    status_code=201,
)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def apply_leave_with_documents(
    request: Request,
    payload: str = Form(..., description="LeaveApplyRequest as JSON"),
    files: list[UploadFile] = File(default=[]),
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    storage: DocumentStorage = Depends(get_document_storage),
):
    """Apply for leave with supporting documents (multipart form)."""
    try:
        body = LeaveApplyRequest.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValidationException({"payload": [f"Invalid leave application: {exc}"]})

    data = _scope_application(body, user)
    incoming = [
        IncomingDocument(
            filename=f.filename or "document",
            content_type=f.content_type,
            content=await f.read(),
        )
        for f in files
    ]
    return await LeaveService.submit_leave(
        data, files=incoming, storage=storage, session_factory=session_factory,
    )


# ── PATCH /leaves/{id}/approve ──────────────────────────────────────

@router.patch("/leaves/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveApproveRequest] = None,
    user: CurrentUser = Depends(_approver),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending leave request."""
    return await ApprovalWorkflow.approve(
        db, request_id, user.employee_id,
        company_id=company_scope(user),
        comment=body.comment if body else None,
    )


# ── PATCH /leaves/{id}/reject ───────────────────────────────────────

@router.patch("/leaves/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    user: CurrentUser = Depends(_approver),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending leave request. A reason is required."""
    return await ApprovalWorkflow.reject(
        db, request_id, user.employee_id, body.rejection_reason,
        company_id=company_scope(user),
    )


# ── PATCH /leaves/{id}/cancel ───────────────────────────────────────

@router.patch("/leaves/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending or approved leave request (owner or approver)."""
    return await ApprovalWorkflow.cancel(
        db, request_id, user.employee_id,
        is_approver=user.has_role(*APPROVER_ROLES),
        company_id=company_scope(user),
    )


# ── PATCH /bulkupdate ───────────────────────────────────────────────

@router.patch("/bulkupdate", response_model=BulkUpdateResult)
async def bulk_update(
    body: BulkUpdateRequest,
    user: CurrentUser = Depends(_approver),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject many requests; each id succeeds or fails on its own."""
    return await ApprovalWorkflow.bulk_update(
        db, body.ids, body.action, user.employee_id,
        company_id=company_scope(user),
        comment=body.comment,
        rejection_reason=body.rejection_reason,
    )


# ── GET /{employee_id}/summary ──────────────────────────────────────

@router.get("/{employee_id}/summary", response_model=LeaveSummaryOut)
async def leave_summary(
    employee_id: uuid.UUID,
    company_id: uuid.UUID = Query(...),
    on: Optional[date] = Query(None, description="Reference date; defaults to today"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Used and remaining days per leave type in the current policy windows."""
    ensure_company_access(user, company_id)
    _ensure_self_or_reviewer(user, employee_id)
    snapshot = await PolicyService.load_snapshot(db, company_id)
    return await BalanceLedger.summary(db, snapshot, employee_id, on or date.today())


# ── GET /statistics/{company_id}/{year} ─────────────────────────────

@router.get("/statistics/{company_id}/{year}", response_model=LeaveStatisticsOut)
async def leave_statistics(
    company_id: uuid.UUID,
    year: int,
    user: CurrentUser = Depends(_reviewer),
    db: AsyncSession = Depends(get_db),
):
    """Company-wide request counts and approved days for a policy year."""
    ensure_company_access(user, company_id)
    snapshot = await PolicyService.load_snapshot(db, company_id)
    return await BalanceLedger.statistics(db, snapshot, year)


# ── GET /leaves/{company_id}/{employee_id} ──────────────────────────

@router.get(
    "/leaves/{company_id}/{employee_id}",
    response_model=PaginatedResponse[LeaveRequestOut],
)
async def employee_leaves(
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """An employee's leave requests, newest first."""
    ensure_company_access(user, company_id)
    _ensure_self_or_reviewer(user, employee_id)
    return await LeaveService.get_employee_leaves(
        db, company_id, employee_id, status=status, params=pagination,
    )


# ── GET /leaves/{company_id} ────────────────────────────────────────

@router.get("/leaves/{company_id}", response_model=PaginatedResponse[LeaveRequestOut])
async def company_leaves(
    company_id: uuid.UUID,
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(_reviewer),
    db: AsyncSession = Depends(get_db),
):
    """All leave requests of a company, optionally filtered by status."""
    ensure_company_access(user, company_id)
    return await LeaveService.get_company_leaves(
        db, company_id, status=status, params=pagination,
    )
