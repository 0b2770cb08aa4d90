"""Policy store — per-company leave configuration and its write-time invariants.

Business logic:
  - One policy per company, looked up by company id
  - Leave-type catalog with unique short codes and ordered quota limits
  - Calendar rules: fiscal year start, week-off pattern, holiday list
  - Frozen, versioned snapshots for the leave validator
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.audit import create_audit_entry
from hrops.common.exceptions import (
    InvalidLeaveTypeException,
    NotFoundException,
    PolicyConflictException,
    PolicyNotFoundException,
)
from hrops.policy.models import LeavePolicy, LeaveTypeDef, PolicyHoliday
from hrops.policy.schemas import (
    HolidayIn,
    LeavePolicyCreate,
    LeavePolicyOut,
    LeavePolicyUpdate,
    LeaveTypeCreate,
    LeaveTypeRule,
    LeaveTypeUpdate,
    PolicySnapshot,
)

logger = logging.getLogger(__name__)

_LIMIT_FIELDS = (
    "max_per_request",
    "min_per_request",
    "max_instances_per_year",
    "max_instances_per_month",
)


def check_leave_type_limits(short_code: str, values: dict[str, Any]) -> None:
    """Enforce ``min_per_request <= max_per_request <= max_instances_per_year``.

    Missing bounds are unlimited and skip the comparisons they take part in.
    """
    min_req = values.get("min_per_request")
    max_req = values.get("max_per_request")
    per_year = values.get("max_instances_per_year")
    per_month = values.get("max_instances_per_month")

    for field, value in (
        ("max_per_request", max_req),
        ("max_instances_per_year", per_year),
        ("max_instances_per_month", per_month),
    ):
        if value is not None and value < 1:
            raise PolicyConflictException(
                f"Invalid {field} for {short_code}. It must be at least 1.", field,
            )

    if min_req is not None and max_req is not None and min_req > max_req:
        raise PolicyConflictException(
            f"Invalid min_per_request for {short_code}. "
            "It must be less than or equal to max_per_request.",
            "min_per_request",
        )
    if max_req is not None and per_year is not None and max_req > per_year:
        raise PolicyConflictException(
            f"Invalid max_per_request for {short_code}. "
            "It must be less than or equal to max_instances_per_year.",
            "max_per_request",
        )
    if min_req is not None and per_year is not None and min_req > per_year:
        raise PolicyConflictException(
            f"Invalid min_per_request for {short_code}. "
            "It must be less than or equal to max_instances_per_year.",
            "min_per_request",
        )
    if per_month is not None and per_year is not None and per_month > per_year:
        raise PolicyConflictException(
            f"Invalid max_instances_per_month for {short_code}. "
            "It must be less than or equal to max_instances_per_year.",
            "max_instances_per_month",
        )


# ═════════════════════════════════════════════════════════════════════
# PolicyService
# ═════════════════════════════════════════════════════════════════════


class PolicyService:
    """Async policy operations: lookup, snapshot, provisioning, leave-type catalog."""

    # ─────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_policy(db: AsyncSession, company_id: uuid.UUID) -> LeavePolicy:
        """Return the company's policy or raise ``PolicyNotFoundException``."""

        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.company_id == company_id)
        )
        policy = result.scalars().first()
        if policy is None:
            raise PolicyNotFoundException(company_id)
        return policy

    @staticmethod
    async def get_policy_by_id(db: AsyncSession, policy_id: uuid.UUID) -> LeavePolicy:
        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.id == policy_id)
        )
        policy = result.scalars().first()
        if policy is None:
            raise NotFoundException("LeavePolicy", str(policy_id))
        return policy

    @staticmethod
    def snapshot(policy: LeavePolicy) -> PolicySnapshot:
        """Freeze the policy as it is right now."""
        return PolicySnapshot(
            policy_id=policy.id,
            version=policy.version,
            company_id=policy.company_id,
            year_start_month=policy.year_start_month,
            week_off=frozenset(policy.week_off or ()),
            holidays=frozenset(h.holiday_date for h in policy.holidays),
            leave_types=tuple(LeaveTypeRule.model_validate(lt) for lt in policy.leave_types),
        )

    @staticmethod
    async def load_snapshot(db: AsyncSession, company_id: uuid.UUID) -> PolicySnapshot:
        policy = await PolicyService.get_policy(db, company_id)
        return PolicyService.snapshot(policy)

    @staticmethod
    def validate_leave_type(snapshot: PolicySnapshot, type_name_or_code: str) -> LeaveTypeRule:
        """Resolve a leave type by short code (case-insensitive) or by name.

        Raises ``InvalidLeaveTypeException`` when the type is unknown or
        has been soft-disabled.
        """
        needle = (type_name_or_code or "").strip()
        for rule in snapshot.leave_types:
            if rule.short_code == needle.upper() or rule.name.lower() == needle.lower():
                if not rule.is_active:
                    raise InvalidLeaveTypeException(needle, inactive=True)
                return rule
        raise InvalidLeaveTypeException(needle)

    @staticmethod
    async def get_policy_out(db: AsyncSession, company_id: uuid.UUID) -> LeavePolicyOut:
        policy = await PolicyService.get_policy(db, company_id)
        return LeavePolicyOut.model_validate(policy)

    # ─────────────────────────────────────────────────────────────────
    # Provisioning
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_policy(
        db: AsyncSession,
        data: LeavePolicyCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicyOut:
        """Provision the single leave policy of a company."""

        existing = await db.execute(
            select(LeavePolicy.id).where(LeavePolicy.company_id == data.company_id)
        )
        if existing.scalar() is not None:
            raise PolicyConflictException(
                f"A leave policy already exists for company '{data.company_id}'.",
                "company_id",
            )

        seen_codes: set[str] = set()
        for lt in data.leave_types:
            if lt.short_code in seen_codes:
                raise PolicyConflictException(
                    f"Duplicate shortCode: {lt.short_code}", "short_code",
                )
            seen_codes.add(lt.short_code)
            check_leave_type_limits(lt.short_code, lt.model_dump())

        policy = LeavePolicy(
            company_id=data.company_id,
            year_start_month=data.year_start_month,
            week_off=list(data.week_off),
            holidays=PolicyService._build_holidays(data.holidays),
            leave_types=[LeaveTypeDef(**lt.model_dump()) for lt in data.leave_types],
        )
        db.add(policy)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise PolicyConflictException(
                f"A leave policy already exists for company '{data.company_id}'.",
                "company_id",
            )

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        logger.info(
            "Leave policy %s created for company %s with %d leave type(s)",
            policy.id, policy.company_id, len(data.leave_types),
        )
        return LeavePolicyOut.model_validate(policy)

    @staticmethod
    def _build_holidays(holidays: list[HolidayIn]) -> list[PolicyHoliday]:
        by_date: dict = {}
        for h in holidays:
            by_date.setdefault(h.date, h)
        return [
            PolicyHoliday(holiday_date=d, name=by_date[d].name)
            for d in sorted(by_date)
        ]

    @staticmethod
    async def update_policy(
        db: AsyncSession,
        policy_id: uuid.UUID,
        data: LeavePolicyUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicyOut:
        """Update fiscal year start, week-off pattern and/or replace the holiday list."""

        policy = await PolicyService.get_policy_by_id(db, policy_id)
        changes = data.model_dump(exclude_unset=True, mode="json")
        if not changes:
            return LeavePolicyOut.model_validate(policy)

        old_values = {
            "year_start_month": policy.year_start_month,
            "week_off": list(policy.week_off),
            "holidays": [h.holiday_date.isoformat() for h in policy.holidays],
        }

        if data.year_start_month is not None:
            policy.year_start_month = data.year_start_month
        if data.week_off is not None:
            policy.week_off = list(data.week_off)
        if data.holidays is not None:
            PolicyService._replace_holidays(policy, data.holidays)

        policy.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=changes,
        )
        logger.info("Leave policy %s updated to version %d", policy.id, policy.version)
        return LeavePolicyOut.model_validate(policy)

    @staticmethod
    def _replace_holidays(policy: LeavePolicy, holidays: list[HolidayIn]) -> None:
        # Rows for dates that survive are updated in place; the unit of work
        # inserts before it deletes, so re-adding a date would collide.
        wanted = {h.date: h for h in reversed(holidays)}
        kept: list[PolicyHoliday] = []
        for existing in policy.holidays:
            incoming = wanted.pop(existing.holiday_date, None)
            if incoming is not None:
                existing.name = incoming.name
                kept.append(existing)
        kept.extend(
            PolicyHoliday(holiday_date=d, name=h.name) for d, h in wanted.items()
        )
        policy.holidays = sorted(kept, key=lambda h: h.holiday_date)

    # ─────────────────────────────────────────────────────────────────
    # Leave-type catalog
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def add_leave_type(
        db: AsyncSession,
        policy_id: uuid.UUID,
        data: LeaveTypeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicyOut:
        """Append a leave type; short codes stay unique within the policy."""

        policy = await PolicyService.get_policy_by_id(db, policy_id)

        if any(t.short_code == data.short_code for t in policy.leave_types):
            raise PolicyConflictException(
                f"Leave type with shortCode {data.short_code} already exists",
                "short_code",
            )
        check_leave_type_limits(data.short_code, data.model_dump())

        leave_type = LeaveTypeDef(**data.model_dump())
        policy.leave_types.append(leave_type)
        policy.updated_at = datetime.now(timezone.utc)
        await PolicyService._flush_catalog(db, data.short_code)

        await create_audit_entry(
            db,
            action="add_leave_type",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        logger.info("Leave type %s added to policy %s", data.short_code, policy.id)
        return LeavePolicyOut.model_validate(policy)

    @staticmethod
    async def update_leave_type(
        db: AsyncSession,
        policy_id: uuid.UUID,
        type_id: uuid.UUID,
        data: LeaveTypeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicyOut:
        """Patch a leave type. The existing short code is kept when none is given."""

        policy = await PolicyService.get_policy_by_id(db, policy_id)
        leave_type = PolicyService._find_type(policy, type_id)

        changes = data.model_dump(exclude_unset=True)
        if not changes.get("short_code"):
            changes["short_code"] = leave_type.short_code

        if changes["short_code"] != leave_type.short_code and any(
            t.short_code == changes["short_code"]
            for t in policy.leave_types
            if t.id != leave_type.id
        ):
            raise PolicyConflictException(
                f"Leave type with shortCode {changes['short_code']} already exists",
                "short_code",
            )

        merged = {f: getattr(leave_type, f) for f in _LIMIT_FIELDS}
        merged.update({f: v for f, v in changes.items() if f in _LIMIT_FIELDS})
        check_leave_type_limits(changes["short_code"], merged)

        old_values: dict[str, Any] = {}
        for field, value in changes.items():
            old = getattr(leave_type, field)
            old_values[field] = str(old) if isinstance(old, Decimal) else old
            setattr(leave_type, field, value)

        now = datetime.now(timezone.utc)
        leave_type.updated_at = now
        policy.updated_at = now
        await PolicyService._flush_catalog(db, changes["short_code"])

        await create_audit_entry(
            db,
            action="update_leave_type",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=data.model_dump(exclude_unset=True, mode="json"),
        )
        logger.info("Leave type %s updated on policy %s", leave_type.short_code, policy.id)
        return LeavePolicyOut.model_validate(policy)

    @staticmethod
    async def toggle_leave_type(
        db: AsyncSession,
        policy_id: uuid.UUID,
        type_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicyOut:
        """Soft-disable an active leave type, or re-enable a disabled one."""

        policy = await PolicyService.get_policy_by_id(db, policy_id)
        leave_type = PolicyService._find_type(policy, type_id)

        leave_type.is_active = not leave_type.is_active
        now = datetime.now(timezone.utc)
        leave_type.updated_at = now
        policy.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="activate_leave_type" if leave_type.is_active else "deactivate_leave_type",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            new_values={"short_code": leave_type.short_code, "is_active": leave_type.is_active},
        )
        logger.info(
            "Leave type %s %s on policy %s",
            leave_type.short_code,
            "activated" if leave_type.is_active else "deactivated",
            policy.id,
        )
        return LeavePolicyOut.model_validate(policy)

    @staticmethod
    def _find_type(policy: LeavePolicy, type_id: uuid.UUID) -> LeaveTypeDef:
        for leave_type in policy.leave_types:
            if leave_type.id == type_id:
                return leave_type
        raise NotFoundException("LeaveType", str(type_id))

    @staticmethod
    async def _flush_catalog(db: AsyncSession, short_code: str) -> None:
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            err = str(exc.orig)
            if "uq_leave_type_short_code" in err or "leave_type_defs.short_code" in err:
                raise PolicyConflictException(
                    f"Leave type with shortCode {short_code} already exists",
                    "short_code",
                )
            raise
