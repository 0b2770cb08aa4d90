"""Leave service layer — leave application validator and read side.

Business logic:
  - Required-field, half-day and date-order checks on the application
  - Business-day computation against a frozen policy snapshot
  - Per leave type request bounds, document rule, yearly and monthly quotas
  - Overlap detection against pending and approved requests
  - Auto-approval when no leave type in the breakup needs an approver
  - Upload-then-transact submission under a per-employee serialization point
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrops.common.audit import create_audit_entry
from hrops.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    DEFAULT_PAGE_SIZE,
    HalfDayType,
    LeaveStatus,
)
from hrops.common.exceptions import (
    DocumentRequiredException,
    OverlapException,
    QuotaExceededException,
    ValidationException,
    format_days,
)
from hrops.common.pagination import PaginationParams, paginate
from hrops.database import run_in_transaction
from hrops.leave.calendar import snapshot_business_days
from hrops.leave.ledger import BalanceLedger, monthly_window, yearly_window
from hrops.leave.models import LeaveBreakupEntry, LeaveRequest
from hrops.leave.schemas import (
    DocumentRef,
    LeaveApplyRequest,
    LeaveBreakupItem,
    LeaveRequestOut,
)
from hrops.leave.storage import (
    DocumentStorage,
    IncomingDocument,
    LocalDocumentStorage,
    check_document,
)
from hrops.leave.workflow import ApprovalWorkflow
from hrops.policy.schemas import LeaveTypeRule, PolicySnapshot
from hrops.policy.service import PolicyService

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")

# (company_id, employee_id) -> lock held for one applying transaction
_employee_locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = weakref.WeakValueDictionary()


def _employee_lock(company_id: uuid.UUID, employee_id: uuid.UUID) -> asyncio.Lock:
    key = (company_id, employee_id)
    lock = _employee_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _employee_locks[key] = lock
    return lock


def _is_half_step(days: Decimal) -> bool:
    return (days * 2) == (days * 2).to_integral_value()


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: apply, submit with documents, listings."""

    # ─────────────────────────────────────────────────────────────────
    # Application checks (no I/O)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def check_application(data: LeaveApplyRequest) -> None:
        """Required fields, half-day rule and date order.

        Runs again inside ``apply_leave``; ``submit_leave`` calls it early so
        nothing is uploaded for an application that can never succeed.
        """

        # ── Required fields ─────────────────────────────────────────
        errors: dict[str, list[str]] = {}
        for field in ("employee_id", "company_id", "start_date", "end_date"):
            if getattr(data, field) is None:
                errors[field] = [f"{field} is required."]
        if not (data.reason or "").strip():
            errors["reason"] = ["reason is required."]
        if not data.leave_breakup:
            errors["leave_breakup"] = ["leave_breakup must contain at least one entry."]
        if errors:
            raise ValidationException(errors)

        seen: set[str] = set()
        for index, item in enumerate(data.leave_breakup):
            ref = LeaveService._type_reference(item)
            if not ref:
                raise ValidationException(
                    {f"leave_breakup.{index}": ["Each breakup entry needs a leave_type or short_code."]}
                )
            if ref.upper() in seen:
                raise ValidationException(
                    {"leave_breakup": [f"Leave type '{ref}' appears more than once in the breakup."]}
                )
            seen.add(ref.upper())
            if item.days is not None and (item.days <= 0 or not _is_half_step(item.days)):
                raise ValidationException(
                    {f"leave_breakup.{index}.days": [
                        f"Days for '{ref}' must be a positive multiple of 0.5."
                    ]}
                )

        # ── Half-day rule ───────────────────────────────────────────
        if data.is_half_day:
            allowed = [h.value for h in HalfDayType]
            if data.half_day_type not in allowed:
                raise ValidationException(
                    {"half_day_type": [f"half_day_type must be one of: {', '.join(allowed)}."]}
                )
            if data.start_date != data.end_date:
                raise ValidationException(
                    {"end_date": ["Half-day leave must start and end on the same day."]}
                )
            if len(data.leave_breakup) != 1:
                raise ValidationException(
                    {"leave_breakup": ["Half-day leave must use exactly one leave type."]}
                )

        # ── Date order ──────────────────────────────────────────────
        if data.end_date < data.start_date:
            raise ValidationException(
                {"end_date": ["end_date must be on or after start_date."]}
            )

    @staticmethod
    def _type_reference(item: LeaveBreakupItem) -> str:
        return (item.short_code or item.leave_type or "").strip()

    @staticmethod
    def _resolve_breakup(
        snapshot: PolicySnapshot,
        breakup: Sequence[LeaveBreakupItem],
    ) -> list[tuple[LeaveTypeRule, Optional[Decimal]]]:
        resolved: list[tuple[LeaveTypeRule, Optional[Decimal]]] = []
        seen_ids: set[uuid.UUID] = set()
        for item in breakup:
            rule = PolicyService.validate_leave_type(snapshot, LeaveService._type_reference(item))
            if rule.id in seen_ids:
                raise ValidationException(
                    {"leave_breakup": [f"Leave type '{rule.short_code}' appears more than once in the breakup."]}
                )
            seen_ids.add(rule.id)
            resolved.append((rule, item.days))
        return resolved

    @staticmethod
    def _allocate_days(
        entries: list[tuple[LeaveTypeRule, Optional[Decimal]]],
        business_days: Decimal,
        is_half_day: bool,
    ) -> list[tuple[LeaveTypeRule, Decimal]]:
        if is_half_day:
            rule, _ = entries[0]
            return [(rule, HALF_DAY)]

        if len(entries) == 1 and entries[0][1] is None:
            return [(entries[0][0], business_days)]

        missing = [rule.short_code for rule, days in entries if days is None]
        if missing:
            raise ValidationException(
                {"leave_breakup": [
                    f"Days are required for {', '.join(missing)} when the breakup "
                    "spans several leave types."
                ]}
            )

        allocations = [(rule, Decimal(days)) for rule, days in entries]
        requested = sum((days for _, days in allocations), Decimal("0"))
        if requested != business_days:
            raise ValidationException(
                {"leave_breakup": [
                    f"Leave breakup totals {format_days(requested)} day(s) but the "
                    f"selected range has {format_days(business_days)} business day(s)."
                ]}
            )
        return allocations

    # ─────────────────────────────────────────────────────────────────
    # Apply Leave
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_leave(
        db: AsyncSession,
        data: LeaveApplyRequest,
        *,
        documents: Sequence[DocumentRef] = (),
    ) -> LeaveRequestOut:
        """Validate and record a leave application in the caller's transaction.

        Every read goes through ``db`` so quota and overlap checks see the
        same state the new request is written against. Any failure raises
        before anything is added to the session.
        """

        LeaveService.check_application(data)

        # ── Policy snapshot ─────────────────────────────────────────
        snapshot = await PolicyService.load_snapshot(db, data.company_id)

        # ── Documents ───────────────────────────────────────────────
        attached = [d.model_dump() for d in (*data.documents, *documents)]

        # ── Business days ───────────────────────────────────────────
        entries = LeaveService._resolve_breakup(snapshot, data.leave_breakup)
        if data.is_half_day:
            business_days = HALF_DAY
        else:
            exclude_holiday = all(rule.exclude_holidays for rule, _ in entries)
            business_days = Decimal(
                snapshot_business_days(
                    snapshot, data.start_date, data.end_date,
                    exclude_holiday=exclude_holiday,
                )
            )

        if business_days <= 0:
            raise ValidationException(
                {"dates": ["No business days in the selected range "
                           "(all days are week-offs or holidays)."]}
            )

        allocations = LeaveService._allocate_days(entries, business_days, data.is_half_day)

        # ── Per leave type rules ────────────────────────────────────
        year_start, year_end = yearly_window(snapshot.year_start_month, data.start_date)
        month_start, month_end = monthly_window(data.start_date)

        total_days = Decimal("0")
        for rule, days in allocations:
            code = rule.short_code
            if rule.min_per_request is not None and days < rule.min_per_request:
                raise ValidationException(
                    {"leave_breakup": [
                        f"{code} requires at least {format_days(rule.min_per_request)} "
                        f"day(s) per request; {format_days(days)} requested."
                    ]}
                )
            if rule.max_per_request is not None and days > rule.max_per_request:
                raise ValidationException(
                    {"leave_breakup": [
                        f"{code} allows at most {format_days(rule.max_per_request)} "
                        f"day(s) per request; {format_days(days)} requested."
                    ]}
                )

            if rule.requires_docs and days > rule.docs_required_after_days and not attached:
                raise DocumentRequiredException(code, rule.docs_required_after_days)

            if rule.max_instances_per_year is not None:
                used = await BalanceLedger.used_days(
                    db, data.employee_id, data.company_id, code, year_start, year_end,
                )
                if used + days > rule.max_instances_per_year:
                    raise QuotaExceededException(
                        code, "yearly", rule.max_instances_per_year,
                        rule.max_instances_per_year - used,
                    )

            if rule.max_instances_per_month is not None:
                used = await BalanceLedger.used_days(
                    db, data.employee_id, data.company_id, code, month_start, month_end,
                )
                if used + days > rule.max_instances_per_month:
                    raise QuotaExceededException(
                        code, "monthly", rule.max_instances_per_month,
                        rule.max_instances_per_month - used,
                    )

            total_days += days

        # ── Overlap ─────────────────────────────────────────────────
        overlap_result = await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id == data.employee_id,
                LeaveRequest.company_id == data.company_id,
                LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
                LeaveRequest.start_date <= data.end_date,
                LeaveRequest.end_date >= data.start_date,
            )
            .order_by(LeaveRequest.start_date)
            .limit(1)
        )
        conflict = overlap_result.scalars().first()
        if conflict is not None:
            raise OverlapException(
                conflict.start_date, conflict.end_date, conflict.status.value,
            )

        # ── Persist ─────────────────────────────────────────────────
        leave_request = LeaveRequest(
            employee_id=data.employee_id,
            company_id=data.company_id,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=total_days,
            reason=data.reason.strip(),
            is_half_day=data.is_half_day,
            half_day_type=data.half_day_type if data.is_half_day else None,
            documents=attached,
            status=LeaveStatus.pending,
            breakup=[
                LeaveBreakupEntry(
                    position=position,
                    leave_type=rule.name,
                    short_code=rule.short_code,
                    days=days,
                )
                for position, (rule, days) in enumerate(allocations)
            ],
        )
        db.add(leave_request)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=data.employee_id,
            new_values={
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "total_days": str(total_days),
                "breakup": [
                    {"short_code": rule.short_code, "days": str(days)}
                    for rule, days in allocations
                ],
                "policy_version": snapshot.version,
                "status": LeaveStatus.pending.value,
            },
        )
        logger.info(
            "Leave request %s created for employee %s (%s to %s, %s day(s))",
            leave_request.id, data.employee_id, data.start_date, data.end_date,
            format_days(total_days),
        )

        # ── Auto-approval ───────────────────────────────────────────
        if not any(rule.requires_approval for rule, _ in allocations):
            await ApprovalWorkflow.auto_approve(db, leave_request)

        return LeaveRequestOut.model_validate(leave_request)

    # ─────────────────────────────────────────────────────────────────
    # Submit (uploads + unit of work)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit_leave(
        data: LeaveApplyRequest,
        *,
        files: Sequence[IncomingDocument] = (),
        storage: Optional[DocumentStorage] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ) -> LeaveRequestOut:
        """Upload attachments, then run ``apply_leave`` in its own transaction.

        Applications of the same employee are serialized for the lifetime of
        the transaction. Uploaded files are removed again when the
        transaction does not commit.
        """

        LeaveService.check_application(data)
        for file in files:
            check_document(file)

        storage = storage or LocalDocumentStorage()
        destination = f"leave-documents/{data.company_id}/{data.employee_id}"

        uploaded: list[DocumentRef] = []

        async def work(session: AsyncSession) -> LeaveRequestOut:
            await LeaveService._lock_employee(session, data.company_id, data.employee_id)
            return await LeaveService.apply_leave(session, data, documents=uploaded)

        committed = False
        try:
            for file in files:
                uploaded.append(await storage.upload(file, destination))
            async with _employee_lock(data.company_id, data.employee_id):
                result = await run_in_transaction(work, session_factory=session_factory)
            committed = True
            return result
        finally:
            if not committed:
                await LeaveService._discard_uploads(storage, uploaded)

    @staticmethod
    async def _lock_employee(
        session: AsyncSession,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> None:
        """Take the per-employee advisory lock on PostgreSQL.

        The lock statement is the first one of the transaction, so the
        SERIALIZABLE snapshot predates it. Across processes the lock only
        narrows contention; a conflicting commit that lands while we wait
        is caught as a serialization failure and retried by
        ``run_in_transaction``.
        """
        if session.bind is None or session.bind.dialect.name != "postgresql":
            return
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"leave:{company_id}:{employee_id}"},
        )

    @staticmethod
    async def _discard_uploads(storage: DocumentStorage, uploaded: Sequence[DocumentRef]) -> None:
        for doc in uploaded:
            logger.warning("Removing orphaned leave document %s", doc.url)
            await storage.delete(doc.url)

    # ─────────────────────────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_employee_leaves(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        status: Optional[LeaveStatus] = None,
        params: Optional[PaginationParams] = None,
    ) -> dict:
        """An employee's leave requests, newest first."""

        query = (
            select(LeaveRequest)
            .where(
                LeaveRequest.company_id == company_id,
                LeaveRequest.employee_id == employee_id,
            )
            .order_by(LeaveRequest.created_at.desc())
        )
        if status:
            query = query.where(LeaveRequest.status == status)
        return await LeaveService._page(db, query, params)

    @staticmethod
    async def get_company_leaves(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        status: Optional[LeaveStatus] = None,
        params: Optional[PaginationParams] = None,
    ) -> dict:
        """All leave requests of a company, optionally filtered by status."""

        query = (
            select(LeaveRequest)
            .where(LeaveRequest.company_id == company_id)
            .order_by(LeaveRequest.created_at.desc())
        )
        if status:
            query = query.where(LeaveRequest.status == status)
        return await LeaveService._page(db, query, params)

    @staticmethod
    async def _page(db: AsyncSession, query, params: Optional[PaginationParams]) -> dict:
        params = params or PaginationParams(page=1, page_size=DEFAULT_PAGE_SIZE, sort=None)
        rows, meta = await paginate(db, query, params, model=LeaveRequest)
        return {
            "data": [LeaveRequestOut.model_validate(r) for r in rows],
            "meta": meta,
        }
