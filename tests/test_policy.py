"""Policy store tests — provisioning, leave-type catalog invariants, snapshots."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.audit import AuditTrail
from hrops.common.exceptions import (
    InvalidLeaveTypeException,
    NotFoundException,
    PolicyConflictException,
    PolicyNotFoundException,
)
from hrops.policy.schemas import (
    HolidayIn,
    LeavePolicyCreate,
    LeavePolicyUpdate,
    LeaveTypeCreate,
    LeaveTypeUpdate,
)
from hrops.policy.service import PolicyService, check_leave_type_limits
from tests.conftest import _make_leave_type, _seed_policy


# ═════════════════════════════════════════════════════════════════════
# PROVISIONING
# ═════════════════════════════════════════════════════════════════════


class TestCreatePolicy:

    async def test_defaults(self, db: AsyncSession):
        company_id = uuid.uuid4()
        out = await PolicyService.create_policy(
            db, LeavePolicyCreate(company_id=company_id),
        )
        assert out.company_id == company_id
        assert out.year_start_month == 1
        assert out.week_off == [0, 6]
        assert out.version == 1
        assert out.leave_types == []

    async def test_with_leave_types_and_holidays(self, db: AsyncSession):
        out = await PolicyService.create_policy(
            db,
            LeavePolicyCreate(
                company_id=uuid.uuid4(),
                year_start_month=4,
                week_off=[6, 0, 0],
                holidays=[HolidayIn(date=date(2024, 8, 15), name="Independence Day")],
                leave_types=[
                    LeaveTypeCreate(name="Casual Leave", short_code="cl", max_instances_per_year=12),
                    LeaveTypeCreate(name="Sick Leave", short_code="SL", requires_docs=True),
                ],
            ),
        )
        assert out.week_off == [0, 6]
        assert [lt.short_code for lt in out.leave_types] == ["CL", "SL"]
        assert out.holidays[0].date == date(2024, 8, 15)

    async def test_one_policy_per_company(self, db: AsyncSession):
        company_id = uuid.uuid4()
        await PolicyService.create_policy(db, LeavePolicyCreate(company_id=company_id))
        with pytest.raises(PolicyConflictException):
            await PolicyService.create_policy(db, LeavePolicyCreate(company_id=company_id))

    async def test_duplicate_short_codes_rejected(self, db: AsyncSession):
        with pytest.raises(PolicyConflictException, match="Duplicate shortCode: CL"):
            await PolicyService.create_policy(
                db,
                LeavePolicyCreate(
                    company_id=uuid.uuid4(),
                    leave_types=[
                        LeaveTypeCreate(name="Casual Leave", short_code="CL"),
                        LeaveTypeCreate(name="Comp Leave", short_code="cl"),
                    ],
                ),
            )

    async def test_invalid_week_off_rejected_by_schema(self):
        with pytest.raises(ValidationError):
            LeavePolicyCreate(company_id=uuid.uuid4(), week_off=[7])

    async def test_create_writes_audit_entry(self, db: AsyncSession):
        out = await PolicyService.create_policy(db, LeavePolicyCreate(company_id=uuid.uuid4()))
        result = await db.execute(
            select(AuditTrail).where(AuditTrail.entity_id == out.id)
        )
        entry = result.scalars().one()
        assert entry.action == "create"
        assert entry.entity_type == "leave_policy"


class TestGetPolicy:

    async def test_missing_policy(self, db: AsyncSession):
        with pytest.raises(PolicyNotFoundException):
            await PolicyService.get_policy(db, uuid.uuid4())

    async def test_missing_policy_by_id(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await PolicyService.get_policy_by_id(db, uuid.uuid4())


class TestUpdatePolicy:

    async def test_replace_holidays_keeps_shared_dates(self, db: AsyncSession):
        policy = await _seed_policy(db, holidays=[date(2024, 1, 26), date(2024, 8, 15)])
        out = await PolicyService.update_policy(
            db,
            policy.id,
            LeavePolicyUpdate(holidays=[
                HolidayIn(date=date(2024, 8, 15), name="Independence Day"),
                HolidayIn(date=date(2024, 10, 2)),
            ]),
        )
        assert [h.date for h in out.holidays] == [date(2024, 8, 15), date(2024, 10, 2)]
        assert out.holidays[0].name == "Independence Day"

        snapshot = await PolicyService.load_snapshot(db, policy.company_id)
        assert snapshot.holidays == frozenset({date(2024, 8, 15), date(2024, 10, 2)})

    async def test_update_bumps_version(self, db: AsyncSession):
        policy = await _seed_policy(db)
        out = await PolicyService.update_policy(
            db, policy.id, LeavePolicyUpdate(year_start_month=4, week_off=[5]),
        )
        assert out.year_start_month == 4
        assert out.week_off == [5]
        assert out.version == 2

    async def test_empty_update_is_noop(self, db: AsyncSession):
        policy = await _seed_policy(db)
        out = await PolicyService.update_policy(db, policy.id, LeavePolicyUpdate())
        assert out.version == 1


# ═════════════════════════════════════════════════════════════════════
# LEAVE-TYPE CATALOG
# ═════════════════════════════════════════════════════════════════════


class TestLeaveTypeLimits:
    """Tests for the write-time quota ordering check."""

    def test_valid_ordering(self):
        check_leave_type_limits("CL", {
            "min_per_request": Decimal("1"),
            "max_per_request": Decimal("3"),
            "max_instances_per_year": Decimal("12"),
            "max_instances_per_month": Decimal("4"),
        })

    def test_unbounded_values_skip_comparisons(self):
        check_leave_type_limits("CL", {"min_per_request": Decimal("5")})

    @pytest.mark.parametrize(
        "values, field",
        [
            ({"min_per_request": Decimal("3"), "max_per_request": Decimal("2")}, "min_per_request"),
            ({"max_per_request": Decimal("15"), "max_instances_per_year": Decimal("12")}, "max_per_request"),
            ({"max_instances_per_month": Decimal("13"), "max_instances_per_year": Decimal("12")}, "max_instances_per_month"),
            ({"max_instances_per_year": Decimal("0")}, "max_instances_per_year"),
        ],
    )
    def test_violations(self, values, field):
        with pytest.raises(PolicyConflictException) as exc_info:
            check_leave_type_limits("CL", values)
        assert field in exc_info.value.errors


class TestAddLeaveType:

    async def test_add_leave_type(self, db: AsyncSession):
        policy = await _seed_policy(db)
        out = await PolicyService.add_leave_type(
            db, policy.id,
            LeaveTypeCreate(name="Sick Leave", short_code="sl", max_per_request=3),
        )
        assert [lt.short_code for lt in out.leave_types] == ["CL", "SL"]
        assert out.version == 2

    async def test_duplicate_short_code(self, db: AsyncSession):
        policy = await _seed_policy(db)
        with pytest.raises(PolicyConflictException, match="already exists"):
            await PolicyService.add_leave_type(
                db, policy.id, LeaveTypeCreate(name="Another", short_code="cl"),
            )

    async def test_quota_ordering_enforced(self, db: AsyncSession):
        policy = await _seed_policy(db)
        with pytest.raises(PolicyConflictException):
            await PolicyService.add_leave_type(
                db, policy.id,
                LeaveTypeCreate(
                    name="Earned Leave", short_code="EL",
                    max_per_request=20, max_instances_per_year=15,
                ),
            )

    async def test_unknown_policy(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await PolicyService.add_leave_type(
                db, uuid.uuid4(), LeaveTypeCreate(name="Sick Leave", short_code="SL"),
            )


class TestUpdateLeaveType:

    async def test_keeps_short_code_when_omitted(self, db: AsyncSession):
        policy = await _seed_policy(db)
        type_id = policy.leave_types[0].id
        out = await PolicyService.update_leave_type(
            db, policy.id, type_id, LeaveTypeUpdate(name="Casual", max_per_request=2),
        )
        leave_type = out.leave_types[0]
        assert leave_type.short_code == "CL"
        assert leave_type.name == "Casual"
        assert leave_type.max_per_request == Decimal("2")

    async def test_rename_to_existing_code(self, db: AsyncSession):
        policy = await _seed_policy(
            db,
            leave_types=[
                _make_leave_type(),
                _make_leave_type(name="Sick Leave", short_code="SL"),
            ],
        )
        sick = next(lt for lt in policy.leave_types if lt.short_code == "SL")
        with pytest.raises(PolicyConflictException):
            await PolicyService.update_leave_type(
                db, policy.id, sick.id, LeaveTypeUpdate(short_code="cl"),
            )

    async def test_patch_checked_against_existing_limits(self, db: AsyncSession):
        policy = await _seed_policy(
            db, leave_types=[_make_leave_type(max_instances_per_year=Decimal("10"))],
        )
        with pytest.raises(PolicyConflictException):
            await PolicyService.update_leave_type(
                db, policy.id, policy.leave_types[0].id,
                LeaveTypeUpdate(max_per_request=Decimal("12")),
            )

    @pytest.mark.parametrize(
        "field",
        [
            "name",
            "requires_approval",
            "requires_docs",
            "docs_required_after_days",
            "exclude_holidays",
            "is_active",
        ],
    )
    def test_null_rejected_for_required_columns(self, field):
        with pytest.raises(ValidationError, match="cannot be null"):
            LeaveTypeUpdate.model_validate({field: None})

    def test_null_clears_optional_limits(self):
        update = LeaveTypeUpdate.model_validate({"max_per_request": None})
        assert update.model_dump(exclude_unset=True) == {"max_per_request": None}

    async def test_non_short_code_integrity_error_propagates(self, db: AsyncSession):
        policy = await _seed_policy(db)
        policy_id, type_id = policy.id, policy.leave_types[0].id
        unchecked = LeaveTypeUpdate.model_construct(_fields_set={"name"}, name=None)

        with pytest.raises(IntegrityError, match="NOT NULL"):
            await PolicyService.update_leave_type(db, policy_id, type_id, unchecked)

    async def test_unknown_type(self, db: AsyncSession):
        policy = await _seed_policy(db)
        with pytest.raises(NotFoundException):
            await PolicyService.update_leave_type(
                db, policy.id, uuid.uuid4(), LeaveTypeUpdate(name="X"),
            )


class TestToggleAndValidate:

    async def test_toggle_deactivates_and_reactivates(self, db: AsyncSession):
        policy = await _seed_policy(db)
        type_id = policy.leave_types[0].id

        out = await PolicyService.toggle_leave_type(db, policy.id, type_id)
        assert out.leave_types[0].is_active is False
        snapshot = await PolicyService.load_snapshot(db, policy.company_id)
        with pytest.raises(InvalidLeaveTypeException, match="inactive"):
            PolicyService.validate_leave_type(snapshot, "CL")

        out = await PolicyService.toggle_leave_type(db, policy.id, type_id)
        assert out.leave_types[0].is_active is True

    async def test_validate_by_code_or_name(self, db: AsyncSession):
        policy = await _seed_policy(db)
        snapshot = await PolicyService.load_snapshot(db, policy.company_id)
        assert PolicyService.validate_leave_type(snapshot, "cl").short_code == "CL"
        assert PolicyService.validate_leave_type(snapshot, "casual leave").short_code == "CL"

    async def test_validate_unknown(self, db: AsyncSession):
        policy = await _seed_policy(db)
        snapshot = await PolicyService.load_snapshot(db, policy.company_id)
        with pytest.raises(InvalidLeaveTypeException, match="not defined"):
            PolicyService.validate_leave_type(snapshot, "ML")


class TestPolicySnapshot:

    async def test_snapshot_is_frozen(self, db: AsyncSession):
        policy = await _seed_policy(db)
        snapshot = await PolicyService.load_snapshot(db, policy.company_id)
        with pytest.raises(ValidationError):
            snapshot.year_start_month = 4

    async def test_snapshot_unaffected_by_later_writes(self, db: AsyncSession):
        policy = await _seed_policy(db)
        snapshot = await PolicyService.load_snapshot(db, policy.company_id)

        await PolicyService.toggle_leave_type(db, policy.id, policy.leave_types[0].id)

        assert snapshot.leave_types[0].is_active is True
        assert snapshot.version == 1
        fresh = await PolicyService.load_snapshot(db, policy.company_id)
        assert fresh.version == 2
        assert fresh.leave_types[0].is_active is False
