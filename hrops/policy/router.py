"""Leave policy router — provisioning, calendar rules and the leave-type catalog.

Reads are open to any authenticated member of the company; writes require a
policy administrator role.
"""


import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.auth.dependencies import (
    CurrentUser,
    ensure_company_access,
    get_current_user,
    require_role,
)
from hrops.common.constants import POLICY_ADMIN_ROLES
from hrops.database import get_db
from hrops.policy.schemas import (
    LeavePolicyCreate,
    LeavePolicyOut,
    LeavePolicyUpdate,
    LeaveTypeCreate,
    LeaveTypeUpdate,
)
from hrops.policy.service import PolicyService

router = APIRouter(prefix="", tags=["leave-policy"])

_policy_admin = require_role(*POLICY_ADMIN_ROLES)


async def _load_for_write(
    db: AsyncSession, policy_id: uuid.UUID, user: CurrentUser,
) -> None:
    policy = await PolicyService.get_policy_by_id(db, policy_id)
    ensure_company_access(user, policy.company_id)


# ── POST / ──────────────────────────────────────────────────────────

@router.post("/", response_model=LeavePolicyOut, status_code=status.HTTP_201_CREATED)
async def create_policy(
    body: LeavePolicyCreate,
    user: CurrentUser = Depends(_policy_admin),
    db: AsyncSession = Depends(get_db),
):
    """Provision the leave policy of a company (one per company)."""
    ensure_company_access(user, body.company_id)
    return await PolicyService.create_policy(db, body, actor_id=user.employee_id)


# ── PUT /{policy_id} ────────────────────────────────────────────────

@router.put("/{policy_id}", response_model=LeavePolicyOut)
async def update_policy(
    policy_id: uuid.UUID,
    body: LeavePolicyUpdate,
    user: CurrentUser = Depends(_policy_admin),
    db: AsyncSession = Depends(get_db),
):
    """Change the fiscal year start, week-off pattern or holiday list."""
    await _load_for_write(db, policy_id, user)
    return await PolicyService.update_policy(db, policy_id, body, actor_id=user.employee_id)


# ── POST /{policy_id}/types ─────────────────────────────────────────

@router.post(
    "/{policy_id}/types",
    response_model=LeavePolicyOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_leave_type(
    policy_id: uuid.UUID,
    body: LeaveTypeCreate,
    user: CurrentUser = Depends(_policy_admin),
    db: AsyncSession = Depends(get_db),
):
    await _load_for_write(db, policy_id, user)
    return await PolicyService.add_leave_type(db, policy_id, body, actor_id=user.employee_id)


# ── PUT /{policy_id}/types/{type_id} ────────────────────────────────

@router.put("/{policy_id}/types/{type_id}", response_model=LeavePolicyOut)
async def update_leave_type(
    policy_id: uuid.UUID,
    type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    user: CurrentUser = Depends(_policy_admin),
    db: AsyncSession = Depends(get_db),
):
    await _load_for_write(db, policy_id, user)
    return await PolicyService.update_leave_type(
        db, policy_id, type_id, body, actor_id=user.employee_id,
    )


# ── PATCH /{policy_id}/types/{type_id}/toggle ───────────────────────

@router.patch("/{policy_id}/types/{type_id}/toggle", response_model=LeavePolicyOut)
async def toggle_leave_type(
    policy_id: uuid.UUID,
    type_id: uuid.UUID,
    user: CurrentUser = Depends(_policy_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft-disable or re-enable a leave type."""
    await _load_for_write(db, policy_id, user)
    return await PolicyService.toggle_leave_type(
        db, policy_id, type_id, actor_id=user.employee_id,
    )


# ── GET /company/{company_id} ───────────────────────────────────────

@router.get("/company/{company_id}", response_model=LeavePolicyOut)
async def get_company_policy(
    company_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the company's leave policy."""
    ensure_company_access(user, company_id)
    return await PolicyService.get_policy_out(db, company_id)
