"""Auth dependencies — JWT bearer decoding, RBAC enforcement.

Token issuance and session management live in the identity service; this
module only trusts a signed access token carrying ``sub`` (employee id),
``company_id`` and ``role``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from hrops.common.constants import UserRole
from hrops.common.exceptions import ForbiddenException
from hrops.config import settings


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller as described by its access token."""

    employee_id: uuid.UUID
    company_id: Optional[uuid.UUID]
    role: UserRole

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token claims.")


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(request: Request) -> CurrentUser:
    """Validate the JWT and return the caller it identifies."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    employee_id = _parse_uuid(payload.get("sub"))
    if employee_id is None:
        raise HTTPException(status_code=401, detail="Invalid token claims.")

    role_str = payload.get("role", UserRole.employee.value)
    try:
        role = UserRole(role_str)
    except ValueError:
        role = UserRole.employee
    request.state.user_role = role

    return CurrentUser(
        employee_id=employee_id,
        company_id=_parse_uuid(payload.get("company_id")),
        role=role,
    )


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed_roles:
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check


def ensure_company_access(user: CurrentUser, company_id: uuid.UUID) -> None:
    """Callers only see their own company; superadmins see every tenant."""
    if user.role == UserRole.superadmin:
        return
    if user.company_id is None or user.company_id != company_id:
        raise ForbiddenException(detail="You do not have access to this company's data.")


def company_scope(user: CurrentUser) -> Optional[uuid.UUID]:
    """Company filter for lookups by record id. ``None`` only for superadmins."""
    if user.role == UserRole.superadmin:
        return None
    if user.company_id is None:
        raise ForbiddenException(detail="Access token carries no company.")
    return user.company_id
