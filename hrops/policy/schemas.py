"""Leave policy Pydantic v2 schemas — request / response validation and
the immutable snapshot the leave validator works from.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Out               → response bodies (read)
  - *Rule / *Snapshot  → frozen, in-process configuration objects
"""

from __future__ import annotations

import uuid
import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hrops.common.constants import DEFAULT_WEEK_OFF


def _validate_week_off(value: Optional[list[int]]) -> Optional[list[int]]:
    if value is None:
        return value
    for day in value:
        if day < 0 or day > 6:
            raise ValueError("week_off entries must be weekday indices 0 (Sunday) to 6 (Saturday).")
    return sorted(set(value))


# ═════════════════════════════════════════════════════════════════════
# Holidays
# ═════════════════════════════════════════════════════════════════════


class HolidayIn(BaseModel):
    """A single company holiday."""

    date: dt.date
    name: Optional[str] = Field(None, max_length=100)


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: dt.date = Field(validation_alias="holiday_date")
    name: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    """Payload for adding a leave type to a policy."""

    name: str = Field(..., min_length=1, max_length=100)
    short_code: str = Field(..., min_length=1, max_length=10)
    max_per_request: Optional[Decimal] = Field(None, ge=0)
    min_per_request: Optional[Decimal] = Field(None, ge=0)
    max_instances_per_year: Optional[Decimal] = Field(None, ge=0)
    max_instances_per_month: Optional[Decimal] = Field(None, ge=0)
    requires_approval: bool = True
    requires_docs: bool = False
    docs_required_after_days: Decimal = Field(Decimal("0"), ge=0)
    exclude_holidays: bool = True
    is_active: bool = True

    @field_validator("short_code")
    @classmethod
    def normalize_short_code(cls, v: str) -> str:
        return v.strip().upper()


class LeaveTypeUpdate(BaseModel):
    """Partial update of a leave type. Omitted fields keep their value."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    short_code: Optional[str] = Field(None, min_length=1, max_length=10)
    max_per_request: Optional[Decimal] = Field(None, ge=0)
    min_per_request: Optional[Decimal] = Field(None, ge=0)
    max_instances_per_year: Optional[Decimal] = Field(None, ge=0)
    max_instances_per_month: Optional[Decimal] = Field(None, ge=0)
    requires_approval: Optional[bool] = None
    requires_docs: Optional[bool] = None
    docs_required_after_days: Optional[Decimal] = Field(None, ge=0)
    exclude_holidays: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator(
        "name",
        "requires_approval",
        "requires_docs",
        "docs_required_after_days",
        "exclude_holidays",
        "is_active",
    )
    @classmethod
    def reject_null(cls, v):
        # Omit the field to keep its value; these columns cannot be cleared
        if v is None:
            raise ValueError("cannot be null")
        return v

    @field_validator("short_code")
    @classmethod
    def normalize_short_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class LeaveTypeOut(BaseModel):
    """Full leave type representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    short_code: str
    max_per_request: Optional[Decimal] = None
    min_per_request: Optional[Decimal] = None
    max_instances_per_year: Optional[Decimal] = None
    max_instances_per_month: Optional[Decimal] = None
    requires_approval: bool = True
    requires_docs: bool = False
    docs_required_after_days: Decimal = Decimal("0")
    exclude_holidays: bool = True
    is_active: bool = True


# ═════════════════════════════════════════════════════════════════════
# Policy
# ═════════════════════════════════════════════════════════════════════


class LeavePolicyCreate(BaseModel):
    """Payload for provisioning a company's leave policy."""

    company_id: uuid.UUID
    year_start_month: int = Field(1, ge=1, le=12)
    week_off: list[int] = Field(default_factory=lambda: list(DEFAULT_WEEK_OFF))
    holidays: list[HolidayIn] = Field(default_factory=list)
    leave_types: list[LeaveTypeCreate] = Field(default_factory=list)

    @field_validator("week_off")
    @classmethod
    def validate_week_off(cls, v):
        return _validate_week_off(v)


class LeavePolicyUpdate(BaseModel):
    """Calendar-level policy changes. Leave types have their own endpoints."""

    year_start_month: Optional[int] = Field(None, ge=1, le=12)
    week_off: Optional[list[int]] = None
    holidays: Optional[list[HolidayIn]] = None

    @field_validator("week_off")
    @classmethod
    def validate_week_off(cls, v):
        return _validate_week_off(v)


class LeavePolicyOut(BaseModel):
    """Full policy response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    year_start_month: int
    week_off: list[int]
    version: int
    holidays: list[HolidayOut] = []
    leave_types: list[LeaveTypeOut] = []
    created_at: dt.datetime
    updated_at: dt.datetime


# ═════════════════════════════════════════════════════════════════════
# Frozen snapshot (validator input)
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeRule(BaseModel):
    """Immutable view of one leave type as configured at snapshot time."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    name: str
    short_code: str
    max_per_request: Optional[Decimal] = None
    min_per_request: Optional[Decimal] = None
    max_instances_per_year: Optional[Decimal] = None
    max_instances_per_month: Optional[Decimal] = None
    requires_approval: bool = True
    requires_docs: bool = False
    docs_required_after_days: Decimal = Decimal("0")
    exclude_holidays: bool = True
    is_active: bool = True


class PolicySnapshot(BaseModel):
    """Immutable, versioned copy of a company policy.

    Handed to the leave validator for the duration of one validation;
    policy edits go through ``PolicyService`` and never touch a snapshot.
    """

    model_config = ConfigDict(frozen=True)

    policy_id: uuid.UUID
    version: int
    company_id: uuid.UUID
    year_start_month: int
    week_off: frozenset[int]
    holidays: frozenset[dt.date]
    leave_types: tuple[LeaveTypeRule, ...]
