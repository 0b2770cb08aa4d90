"""Business-day arithmetic against a company's week-off pattern and holidays."""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from hrops.policy.schemas import PolicySnapshot
from hrops.policy.service import PolicyService


def weekday_index(day: date) -> int:
    """Weekday of *day* as 0=Sunday … 6=Saturday."""
    return (day.weekday() + 1) % 7


def business_days_between(
    start: date,
    end: date,
    *,
    week_off: Iterable[int],
    holidays: Iterable[date],
    exclude_holiday: bool = True,
    include_week_off: bool = False,
) -> int:
    """Count dates in ``[start, end]`` that are neither week-off nor holiday.

    An inverted range yields 0.
    """
    if end < start:
        return 0

    off = frozenset(week_off)
    holiday_set = frozenset(holidays)

    count = 0
    current = start
    while current <= end:
        skip_week_off = not include_week_off and weekday_index(current) in off
        if not (skip_week_off or (exclude_holiday and current in holiday_set)):
            count += 1
        current += timedelta(days=1)
    return count


def snapshot_business_days(
    snapshot: PolicySnapshot,
    start: date,
    end: date,
    *,
    exclude_holiday: bool = True,
    include_week_off: bool = False,
) -> int:
    return business_days_between(
        start,
        end,
        week_off=snapshot.week_off,
        holidays=snapshot.holidays,
        exclude_holiday=exclude_holiday,
        include_week_off=include_week_off,
    )


class CalendarService:
    """Policy-backed calendar queries."""

    @staticmethod
    async def business_days_between(
        db: AsyncSession,
        company_id: uuid.UUID,
        start: date,
        end: date,
        exclude_holiday: bool = True,
        include_week_off: bool = False,
    ) -> int:
        """Load the company's policy and count business days in ``[start, end]``.

        Raises ``PolicyNotFoundException`` when the company has no policy.
        """
        snapshot = await PolicyService.load_snapshot(db, company_id)
        return snapshot_business_days(
            snapshot,
            start,
            end,
            exclude_holiday=exclude_holiday,
            include_week_off=include_week_off,
        )
