"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (calendar, policy, ledger, leave, workflow, API).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hrops.common.constants import LeaveStatus, UserRole
from hrops.config import settings
from hrops.database import Base, get_db, get_session_factory
from hrops.leave.schemas import LeaveApplyRequest, LeaveBreakupItem
from hrops.leave.storage import LocalDocumentStorage, get_document_storage
from hrops.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import hrops.common.audit  # noqa: F401
import hrops.leave.models  # noqa: F401
import hrops.policy.models  # noqa: F401

from hrops.leave.models import LeaveBreakupEntry, LeaveRequest
from hrops.policy.models import LeavePolicy, LeaveTypeDef, PolicyHoliday

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and gen_random_uuid() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hrops.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
def upload_root(tmp_path) -> str:
    return str(tmp_path / "uploads")


@pytest.fixture
async def app(upload_root):
    """Create a fresh app instance with DB and storage dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    application.dependency_overrides[get_document_storage] = (
        lambda: LocalDocumentStorage(root=upload_root)
    )
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_leave_type(
    *,
    name: str = "Casual Leave",
    short_code: str = "CL",
    **overrides,
) -> dict:
    data = dict(
        name=name,
        short_code=short_code,
        max_per_request=None,
        min_per_request=None,
        max_instances_per_year=None,
        max_instances_per_month=None,
        requires_approval=True,
        requires_docs=False,
        docs_required_after_days=Decimal("0"),
        exclude_holidays=True,
        is_active=True,
    )
    data.update(overrides)
    return data


async def _seed_policy(
    db: AsyncSession,
    *,
    company_id: Optional[uuid.UUID] = None,
    year_start_month: int = 1,
    week_off: Iterable[int] = (0, 6),
    holidays: Iterable[date] = (),
    leave_types: Optional[list[dict]] = None,
) -> LeavePolicy:
    """Insert a committed policy so concurrent sessions can see it."""
    if leave_types is None:
        leave_types = [_make_leave_type()]
    policy = LeavePolicy(
        company_id=company_id or uuid.uuid4(),
        year_start_month=year_start_month,
        week_off=list(week_off),
        holidays=[PolicyHoliday(holiday_date=d) for d in sorted(holidays)],
        leave_types=[LeaveTypeDef(**lt) for lt in leave_types],
    )
    db.add(policy)
    await db.commit()
    return policy


async def _seed_leave(
    db: AsyncSession,
    *,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    start_date: date,
    end_date: Optional[date] = None,
    breakup: Iterable[tuple[str, Decimal]] = (("CL", Decimal("1")),),
    status: LeaveStatus = LeaveStatus.approved,
) -> LeaveRequest:
    """Insert a leave request directly, bypassing validation."""
    entries = [
        LeaveBreakupEntry(position=i, leave_type=code, short_code=code, days=Decimal(days))
        for i, (code, days) in enumerate(breakup)
    ]
    leave_req = LeaveRequest(
        employee_id=employee_id,
        company_id=company_id,
        start_date=start_date,
        end_date=end_date or start_date,
        total_days=sum((e.days for e in entries), Decimal("0")),
        reason="Seeded leave",
        documents=[],
        status=status,
        approved_by=employee_id if status == LeaveStatus.approved else None,
        approved_at=datetime.now(timezone.utc) if status == LeaveStatus.approved else None,
        breakup=entries,
    )
    db.add(leave_req)
    await db.commit()
    return leave_req


def _make_application(
    *,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    start_date: date = date(2024, 6, 3),
    end_date: Optional[date] = None,
    breakup: Optional[list[dict]] = None,
    reason: str = "Family function",
    **overrides,
) -> LeaveApplyRequest:
    items = breakup if breakup is not None else [{"leave_type": "CL"}]
    return LeaveApplyRequest(
        employee_id=employee_id,
        company_id=company_id,
        start_date=start_date,
        end_date=end_date or start_date,
        reason=reason,
        leave_breakup=[LeaveBreakupItem(**item) for item in items],
        **overrides,
    )


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    company_id: Optional[uuid.UUID] = None,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "exp": exp,
    }
    if company_id is not None:
        payload["company_id"] = str(company_id)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(
    employee_id: uuid.UUID,
    company_id: Optional[uuid.UUID] = None,
    role: UserRole = UserRole.employee,
) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, company_id, role)}"}
