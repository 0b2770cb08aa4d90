"""Leave policy ORM models: LeavePolicy, PolicyHoliday, LeaveTypeDef."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrops.common.constants import DEFAULT_WEEK_OFF
from hrops.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeavePolicy(Base):
    __tablename__ = "leave_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), unique=True, nullable=False, index=True
    )
    year_start_month: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=1, server_default=sa.text("1")
    )
    # Weekday indices, 0=Sunday … 6=Saturday
    week_off: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=lambda: list(DEFAULT_WEEK_OFF)
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    __table_args__ = (
        sa.CheckConstraint(
            "year_start_month BETWEEN 1 AND 12", name="ck_policy_year_start_month"
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    holidays: Mapped[list[PolicyHoliday]] = relationship(
        back_populates="policy",
        cascade="all, delete-orphan",
        order_by="PolicyHoliday.holiday_date",
        lazy="selectin",
    )
    leave_types: Mapped[list[LeaveTypeDef]] = relationship(
        back_populates="policy",
        cascade="all, delete-orphan",
        order_by="LeaveTypeDef.created_at",
        lazy="selectin",
    )


class PolicyHoliday(Base):
    __tablename__ = "policy_holidays"
    __table_args__ = (
        sa.UniqueConstraint("policy_id", "holiday_date", name="uq_policy_holiday_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_policies.id", ondelete="CASCADE"),
        nullable=False,
    )
    holiday_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(sa.String(100))

    # Relationships
    policy: Mapped[LeavePolicy] = relationship(back_populates="holidays")


class LeaveTypeDef(Base):
    __tablename__ = "leave_type_defs"
    __table_args__ = (
        sa.UniqueConstraint("policy_id", "short_code", name="uq_leave_type_short_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_policies.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    short_code: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    max_per_request: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    min_per_request: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    max_instances_per_year: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    max_instances_per_month: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    requires_approval: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    requires_docs: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    docs_required_after_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=Decimal("0"), server_default=sa.text("0")
    )
    exclude_holidays: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    # Relationships
    policy: Mapped[LeavePolicy] = relationship(back_populates="leave_types")
