"""Approval state machine for leave requests.

    pending ──► approved ──► cancelled
       │
       ├──────► rejected
       └──────► cancelled

``rejected`` and ``cancelled`` are terminal; ``approved`` may only be
cancelled. Requests are never deleted and their historical content
(dates, breakup, reason, documents) is never rewritten by a transition.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.audit import create_audit_entry
from hrops.common.constants import BulkAction, LeaveStatus
from hrops.common.exceptions import (
    AppException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from hrops.leave.models import LeaveRequest
from hrops.leave.schemas import BulkItemResult, BulkUpdateResult, LeaveRequestOut

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset(
        {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
    ),
    LeaveStatus.approved: frozenset({LeaveStatus.cancelled}),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}

_VERBS = {
    LeaveStatus.approved: "approve",
    LeaveStatus.rejected: "reject",
    LeaveStatus.cancelled: "cancel",
}


def can_transition(current: LeaveStatus, target: LeaveStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_auto_approved(leave_req: LeaveRequest) -> bool:
    """Approved on submission: the applicant is recorded as the approver."""
    return (
        leave_req.status == LeaveStatus.approved
        and leave_req.approved_by == leave_req.employee_id
    )


# ═════════════════════════════════════════════════════════════════════
# ApprovalWorkflow
# ═════════════════════════════════════════════════════════════════════


class ApprovalWorkflow:
    """Async status transitions: auto-approve, approve, reject, cancel, bulk."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load(
        db: AsyncSession,
        request_id: uuid.UUID,
        company_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if company_id is not None:
            query = query.where(LeaveRequest.company_id == company_id)
        result = await db.execute(query)
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_req

    @staticmethod
    def _ensure_transition(leave_req: LeaveRequest, target: LeaveStatus) -> None:
        if can_transition(leave_req.status, target):
            return
        if target == LeaveStatus.approved and is_auto_approved(leave_req):
            raise InvalidTransitionException(
                "Leave request was approved automatically on submission; "
                "no further approval is needed."
            )
        raise InvalidTransitionException(
            f"Cannot {_VERBS[target]} a leave request that is already "
            f"{leave_req.status.value}."
        )

    # ─────────────────────────────────────────────────────────────────
    # Auto-approve (called from apply_leave)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def auto_approve(db: AsyncSession, leave_req: LeaveRequest) -> LeaveRequest:
        """Approve a freshly created request on behalf of its applicant."""

        ApprovalWorkflow._ensure_transition(leave_req, LeaveStatus.approved)
        now = datetime.now(timezone.utc)
        leave_req.status = LeaveStatus.approved
        leave_req.approved_by = leave_req.employee_id
        leave_req.approved_at = now
        leave_req.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="auto_approve",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=leave_req.employee_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.approved.value},
        )
        logger.info("Leave request %s auto-approved", leave_req.id)
        return leave_req

    # ─────────────────────────────────────────────────────────────────
    # Approve
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        company_id: Optional[uuid.UUID] = None,
        comment: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Approve a pending request. A second call fails without touching it."""

        leave_req = await ApprovalWorkflow._load(db, request_id, company_id)
        ApprovalWorkflow._ensure_transition(leave_req, LeaveStatus.approved)

        now = datetime.now(timezone.utc)
        old_status = leave_req.status.value
        leave_req.status = LeaveStatus.approved
        leave_req.approved_by = approver_id
        leave_req.approved_at = now
        leave_req.approver_comment = comment
        leave_req.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=approver_id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.approved.value, "comment": comment},
        )
        logger.info("Leave request %s approved by %s", leave_req.id, approver_id)
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        rejection_reason: Optional[str],
        *,
        company_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequestOut:
        """Reject a pending request; a non-blank reason is mandatory."""

        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationException(
                {"rejection_reason": ["A rejection reason is required."]}
            )

        leave_req = await ApprovalWorkflow._load(db, request_id, company_id)
        ApprovalWorkflow._ensure_transition(leave_req, LeaveStatus.rejected)

        now = datetime.now(timezone.utc)
        old_status = leave_req.status.value
        leave_req.status = LeaveStatus.rejected
        leave_req.rejected_by = approver_id
        leave_req.rejected_at = now
        leave_req.rejection_reason = reason
        leave_req.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=approver_id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.rejected.value, "reason": reason},
        )
        logger.info("Leave request %s rejected by %s", leave_req.id, approver_id)
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        *,
        is_approver: bool = False,
        company_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequestOut:
        """Cancel a pending or approved request (owner or approver only)."""

        leave_req = await ApprovalWorkflow._load(db, request_id, company_id)

        if leave_req.employee_id != actor_id and not is_approver:
            raise ForbiddenException("You can only cancel your own leave requests.")

        ApprovalWorkflow._ensure_transition(leave_req, LeaveStatus.cancelled)

        now = datetime.now(timezone.utc)
        old_status = leave_req.status.value
        leave_req.status = LeaveStatus.cancelled
        leave_req.cancelled_by = actor_id
        leave_req.cancelled_at = now
        leave_req.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="cancel",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.cancelled.value},
        )
        logger.info("Leave request %s cancelled by %s", leave_req.id, actor_id)
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Bulk
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def bulk_update(
        db: AsyncSession,
        request_ids: Sequence[uuid.UUID],
        action: BulkAction,
        actor_id: uuid.UUID,
        *,
        company_id: Optional[uuid.UUID] = None,
        comment: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> BulkUpdateResult:
        """Approve or reject each id independently.

        Every transition validates before it mutates, so a failed item leaves
        nothing behind and its siblings still commit with the session.
        """

        results: list[BulkItemResult] = []
        for request_id in request_ids:
            try:
                if action == BulkAction.approve:
                    out = await ApprovalWorkflow.approve(
                        db, request_id, actor_id, company_id=company_id, comment=comment,
                    )
                else:
                    out = await ApprovalWorkflow.reject(
                        db, request_id, actor_id, rejection_reason, company_id=company_id,
                    )
            except AppException as exc:
                results.append(
                    BulkItemResult(
                        id=request_id,
                        success=False,
                        status=await ApprovalWorkflow._current_status(db, request_id, company_id),
                        error=exc.detail,
                    )
                )
                continue
            results.append(BulkItemResult(id=request_id, success=True, status=out.status))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            "Bulk %s by %s: %d succeeded, %d failed",
            action.value, actor_id, succeeded, len(results) - succeeded,
        )
        return BulkUpdateResult(
            results=results,
            succeeded=succeeded,
            failed=len(results) - succeeded,
        )

    @staticmethod
    async def _current_status(
        db: AsyncSession,
        request_id: uuid.UUID,
        company_id: Optional[uuid.UUID],
    ) -> Optional[LeaveStatus]:
        query = select(LeaveRequest.status).where(LeaveRequest.id == request_id)
        if company_id is not None:
            query = query.where(LeaveRequest.company_id == company_id)
        return (await db.execute(query)).scalar()
