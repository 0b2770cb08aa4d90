"""Balance ledger tests — policy windows, used-days aggregation, summary, statistics."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.constants import LeaveStatus
from hrops.leave.ledger import (
    BalanceLedger,
    fiscal_year_window,
    monthly_window,
    yearly_window,
)
from hrops.policy.service import PolicyService
from tests.conftest import _make_leave_type, _seed_leave, _seed_policy


# ═════════════════════════════════════════════════════════════════════
# WINDOWS
# ═════════════════════════════════════════════════════════════════════


class TestWindows:

    @pytest.mark.parametrize(
        "year_start_month, on, expected",
        [
            (1, date(2024, 6, 15), (date(2024, 1, 1), date(2024, 12, 31))),
            (4, date(2024, 6, 15), (date(2024, 4, 1), date(2025, 3, 31))),
            (4, date(2025, 2, 10), (date(2024, 4, 1), date(2025, 3, 31))),
            (4, date(2024, 4, 1), (date(2024, 4, 1), date(2025, 3, 31))),
            (4, date(2024, 3, 31), (date(2023, 4, 1), date(2024, 3, 31))),
            (12, date(2024, 1, 5), (date(2023, 12, 1), date(2024, 11, 30))),
        ],
    )
    def test_yearly_window(self, year_start_month, on, expected):
        assert yearly_window(year_start_month, on) == expected

    def test_fiscal_year_window_leap_year(self):
        assert fiscal_year_window(3, 2023) == (date(2023, 3, 1), date(2024, 2, 29))

    @pytest.mark.parametrize(
        "on, expected",
        [
            (date(2024, 2, 14), (date(2024, 2, 1), date(2024, 2, 29))),
            (date(2024, 12, 31), (date(2024, 12, 1), date(2024, 12, 31))),
            (date(2024, 6, 1), (date(2024, 6, 1), date(2024, 6, 30))),
        ],
    )
    def test_monthly_window(self, on, expected):
        assert monthly_window(on) == expected


# ═════════════════════════════════════════════════════════════════════
# USED DAYS
# ═════════════════════════════════════════════════════════════════════


class TestUsedDays:

    async def test_counts_pending_and_approved_only(self, db: AsyncSession):
        company_id, employee_id = uuid.uuid4(), uuid.uuid4()
        for status, days in (
            (LeaveStatus.approved, "2"),
            (LeaveStatus.pending, "1.5"),
            (LeaveStatus.rejected, "3"),
            (LeaveStatus.cancelled, "4"),
        ):
            await _seed_leave(
                db, company_id=company_id, employee_id=employee_id,
                start_date=date(2024, 5, 6), breakup=[("CL", Decimal(days))], status=status,
            )

        used = await BalanceLedger.used_days(
            db, employee_id, company_id, "CL", date(2024, 1, 1), date(2024, 12, 31),
        )
        assert used == Decimal("3.5")

    async def test_filters_by_short_code_employee_and_company(self, db: AsyncSession):
        company_id, employee_id = uuid.uuid4(), uuid.uuid4()
        await _seed_leave(
            db, company_id=company_id, employee_id=employee_id,
            start_date=date(2024, 5, 6), end_date=date(2024, 5, 8),
            breakup=[("CL", Decimal("1")), ("SL", Decimal("2"))],
        )
        await _seed_leave(
            db, company_id=company_id, employee_id=uuid.uuid4(), start_date=date(2024, 5, 6),
        )
        await _seed_leave(
            db, company_id=uuid.uuid4(), employee_id=employee_id, start_date=date(2024, 5, 6),
        )

        window = (date(2024, 1, 1), date(2024, 12, 31))
        assert await BalanceLedger.used_days(db, employee_id, company_id, "CL", *window) == Decimal("1")
        assert await BalanceLedger.used_days(db, employee_id, company_id, "SL", *window) == Decimal("2")
        assert await BalanceLedger.used_days(db, employee_id, company_id, "EL", *window) == Decimal("0")

    async def test_period_matches_on_start_date(self, db: AsyncSession):
        """A request starting on the last day of March belongs to March only."""
        company_id, employee_id = uuid.uuid4(), uuid.uuid4()
        await _seed_leave(
            db, company_id=company_id, employee_id=employee_id,
            start_date=date(2024, 3, 29), end_date=date(2024, 4, 2),
            breakup=[("CL", Decimal("3"))],
        )

        march = await BalanceLedger.used_days(
            db, employee_id, company_id, "CL", date(2024, 3, 1), date(2024, 3, 31),
        )
        april = await BalanceLedger.used_days(
            db, employee_id, company_id, "CL", date(2024, 4, 1), date(2024, 4, 30),
        )
        assert march == Decimal("3")
        assert april == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# SUMMARY / STATISTICS
# ═════════════════════════════════════════════════════════════════════


class TestSummary:

    async def test_summary_per_active_type(self, db: AsyncSession):
        policy = await _seed_policy(
            db,
            year_start_month=4,
            leave_types=[
                _make_leave_type(
                    max_instances_per_year=Decimal("12"),
                    max_instances_per_month=Decimal("3"),
                ),
                _make_leave_type(name="Sick Leave", short_code="SL"),
                _make_leave_type(name="Old Leave", short_code="OL", is_active=False),
            ],
        )
        employee_id = uuid.uuid4()
        await _seed_leave(
            db, company_id=policy.company_id, employee_id=employee_id,
            start_date=date(2024, 6, 3), breakup=[("CL", Decimal("2"))],
        )
        await _seed_leave(
            db, company_id=policy.company_id, employee_id=employee_id,
            start_date=date(2024, 5, 6), breakup=[("CL", Decimal("1"))],
            status=LeaveStatus.pending,
        )

        snapshot = await PolicyService.load_snapshot(db, policy.company_id)
        summary = await BalanceLedger.summary(db, snapshot, employee_id, date(2024, 6, 20))

        assert [u.short_code for u in summary.leave_types] == ["CL", "SL"]
        casual = summary.leave_types[0]
        assert casual.year_start == date(2024, 4, 1)
        assert casual.used_this_year == Decimal("3")
        assert casual.remaining_this_year == Decimal("9")
        assert casual.used_this_month == Decimal("2")
        assert casual.remaining_this_month == Decimal("1")
        assert casual.pending_days == Decimal("1")

        sick = summary.leave_types[1]
        assert sick.remaining_this_year is None


class TestStatistics:

    async def test_counts_and_approved_days(self, db: AsyncSession):
        policy = await _seed_policy(db, year_start_month=4)
        company_id = policy.company_id
        employee_id = uuid.uuid4()
        await _seed_leave(
            db, company_id=company_id, employee_id=employee_id,
            start_date=date(2024, 6, 3), breakup=[("CL", Decimal("2")), ("SL", Decimal("1"))],
        )
        await _seed_leave(
            db, company_id=company_id, employee_id=employee_id,
            start_date=date(2025, 1, 6), breakup=[("CL", Decimal("1.5"))],
        )
        await _seed_leave(
            db, company_id=company_id, employee_id=employee_id,
            start_date=date(2024, 7, 1), status=LeaveStatus.rejected,
        )
        # Previous policy year
        await _seed_leave(
            db, company_id=company_id, employee_id=employee_id,
            start_date=date(2024, 3, 4),
        )

        snapshot = await PolicyService.load_snapshot(db, company_id)
        stats = await BalanceLedger.statistics(db, snapshot, 2024)

        assert stats.period_start == date(2024, 4, 1)
        assert stats.period_end == date(2025, 3, 31)
        assert stats.total_requests == 3
        assert stats.by_status["approved"] == 2
        assert stats.by_status["rejected"] == 1
        assert stats.by_status["pending"] == 0
        assert stats.approved_days_by_type == {"CL": Decimal("3.5"), "SL": Decimal("1")}
