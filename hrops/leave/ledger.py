"""Balance ledger — read-side aggregation of leave consumption.

Consumption is never stored: it is summed from breakup entries of
``pending`` and ``approved`` requests, so reads inside the applying
transaction always see the same state the new request is written against.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.constants import ACTIVE_LEAVE_STATUSES, LeaveStatus
from hrops.leave.models import LeaveBreakupEntry, LeaveRequest
from hrops.leave.schemas import LeaveStatisticsOut, LeaveSummaryOut, LeaveTypeUsage
from hrops.policy.schemas import PolicySnapshot

ZERO = Decimal("0")


# ── Policy windows ──────────────────────────────────────────────────

def fiscal_year_window(year_start_month: int, year: int) -> tuple[date, date]:
    """The policy year that starts in ``year_start_month`` of ``year``."""
    start = date(year, year_start_month, 1)
    end = date(year + 1, year_start_month, 1) - timedelta(days=1)
    return start, end


def yearly_window(year_start_month: int, on: date) -> tuple[date, date]:
    """The policy year containing ``on``.

    With ``year_start_month=4`` a date in February 2025 belongs to the
    year running 2024-04-01 … 2025-03-31.
    """
    year = on.year if on.month >= year_start_month else on.year - 1
    return fiscal_year_window(year_start_month, year)


def monthly_window(on: date) -> tuple[date, date]:
    """The calendar month containing ``on``."""
    start = on.replace(day=1)
    if start.month == 12:
        next_month = date(start.year + 1, 1, 1)
    else:
        next_month = date(start.year, start.month + 1, 1)
    return start, next_month - timedelta(days=1)


def remaining(limit: Optional[Decimal], used: Decimal) -> Optional[Decimal]:
    if limit is None:
        return None
    return max(ZERO, Decimal(limit) - used)


# ═════════════════════════════════════════════════════════════════════
# BalanceLedger
# ═════════════════════════════════════════════════════════════════════


class BalanceLedger:
    """Used-days queries scoped by policy windows."""

    @staticmethod
    async def used_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
        company_id: uuid.UUID,
        short_code: str,
        period_start: date,
        period_end: date,
        *,
        statuses: Iterable[LeaveStatus] = ACTIVE_LEAVE_STATUSES,
    ) -> Decimal:
        """Sum of breakup days for ``short_code`` in requests starting inside the period."""

        query = (
            select(func.coalesce(func.sum(LeaveBreakupEntry.days), 0))
            .select_from(LeaveBreakupEntry)
            .join(LeaveRequest, LeaveBreakupEntry.leave_request_id == LeaveRequest.id)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.company_id == company_id,
                LeaveRequest.status.in_(list(statuses)),
                LeaveRequest.start_date >= period_start,
                LeaveRequest.start_date <= period_end,
                LeaveBreakupEntry.short_code == short_code,
            )
        )
        total = (await db.execute(query)).scalar()
        return Decimal(str(total or 0))

    @staticmethod
    async def summary(
        db: AsyncSession,
        snapshot: PolicySnapshot,
        employee_id: uuid.UUID,
        on: date,
    ) -> LeaveSummaryOut:
        """Per active leave type: yearly and monthly consumption and what is left."""

        year_start, year_end = yearly_window(snapshot.year_start_month, on)
        month_start, month_end = monthly_window(on)

        usages: list[LeaveTypeUsage] = []
        for rule in snapshot.leave_types:
            if not rule.is_active:
                continue
            used_year = await BalanceLedger.used_days(
                db, employee_id, snapshot.company_id, rule.short_code, year_start, year_end,
            )
            used_month = await BalanceLedger.used_days(
                db, employee_id, snapshot.company_id, rule.short_code, month_start, month_end,
            )
            pending = await BalanceLedger.used_days(
                db, employee_id, snapshot.company_id, rule.short_code, year_start, year_end,
                statuses=(LeaveStatus.pending,),
            )
            usages.append(
                LeaveTypeUsage(
                    leave_type=rule.name,
                    short_code=rule.short_code,
                    year_start=year_start,
                    year_end=year_end,
                    used_this_year=used_year,
                    remaining_this_year=remaining(rule.max_instances_per_year, used_year),
                    month_start=month_start,
                    month_end=month_end,
                    used_this_month=used_month,
                    remaining_this_month=remaining(rule.max_instances_per_month, used_month),
                    pending_days=pending,
                )
            )

        return LeaveSummaryOut(
            employee_id=employee_id,
            company_id=snapshot.company_id,
            as_of=on,
            leave_types=usages,
        )

    @staticmethod
    async def statistics(
        db: AsyncSession,
        snapshot: PolicySnapshot,
        year: int,
    ) -> LeaveStatisticsOut:
        """Request counts per status and approved days per leave type for a policy year."""

        period_start, period_end = fiscal_year_window(snapshot.year_start_month, year)
        in_period = (
            LeaveRequest.company_id == snapshot.company_id,
            LeaveRequest.start_date >= period_start,
            LeaveRequest.start_date <= period_end,
        )

        status_rows = await db.execute(
            select(LeaveRequest.status, func.count(LeaveRequest.id))
            .where(*in_period)
            .group_by(LeaveRequest.status)
        )
        by_status = {s.value: 0 for s in LeaveStatus}
        for status, count in status_rows.all():
            key = status.value if isinstance(status, LeaveStatus) else str(status)
            by_status[key] = count

        days_rows = await db.execute(
            select(LeaveBreakupEntry.short_code, func.sum(LeaveBreakupEntry.days))
            .select_from(LeaveBreakupEntry)
            .join(LeaveRequest, LeaveBreakupEntry.leave_request_id == LeaveRequest.id)
            .where(*in_period, LeaveRequest.status == LeaveStatus.approved)
            .group_by(LeaveBreakupEntry.short_code)
            .order_by(LeaveBreakupEntry.short_code)
        )
        approved_days = {
            code: Decimal(str(total or 0)) for code, total in days_rows.all()
        }

        return LeaveStatisticsOut(
            company_id=snapshot.company_id,
            year=year,
            period_start=period_start,
            period_end=period_end,
            total_requests=sum(by_status.values()),
            by_status=by_status,
            approved_days_by_type=approved_days,
        )
