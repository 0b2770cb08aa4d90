"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://hrops.dev/errors"


def format_days(value: Decimal) -> str:
    """Render a day quantity without trailing zeros: 1, 0.5, 2.5."""
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """400 — malformed or missing input.

    ``detail`` is the first field message so callers always see the
    specific reason rather than a generic one.
    """

    def __init__(self, errors: dict[str, list[str]]) -> None:
        first = next(iter(errors.values()), ["Invalid input."])
        super().__init__(
            status_code=400,
            error_type="validation-error",
            title="Validation Error",
            detail=first[0] if first else "Invalid input.",
            errors=errors,
        )


class PolicyNotFoundException(AppException):
    """404 — no leave policy provisioned for the company."""

    def __init__(self, company_id: Any) -> None:
        self.company_id = company_id
        super().__init__(
            status_code=404,
            error_type="policy-not-found",
            title="Leave Policy Not Found",
            detail=f"No leave policy is configured for company '{company_id}'.",
        )


class InvalidLeaveTypeException(AppException):
    """400 — unknown or inactive leave type reference."""

    def __init__(self, leave_type: str, *, inactive: bool = False) -> None:
        self.leave_type = leave_type
        reason = "is inactive" if inactive else "is not defined in the company leave policy"
        super().__init__(
            status_code=400,
            error_type="invalid-leave-type",
            title="Invalid Leave Type",
            detail=f"Leave type '{leave_type}' {reason}.",
            errors={"leave_breakup": [f"Leave type '{leave_type}' {reason}."]},
        )


class QuotaExceededException(AppException):
    """400 — yearly or monthly allowance breached."""

    def __init__(
        self,
        short_code: str,
        period: str,
        limit: Decimal,
        remaining: Decimal,
    ) -> None:
        self.short_code = short_code
        self.period = period
        self.limit = limit
        self.remaining = max(Decimal("0"), Decimal(remaining))
        super().__init__(
            status_code=400,
            error_type="quota-exceeded",
            title="Leave Quota Exceeded",
            detail=(
                f"{period.capitalize()} limit of {format_days(limit)} day(s) for "
                f"{short_code} would be exceeded. Remaining: {format_days(self.remaining)}"
            ),
            errors={"remaining": [format_days(self.remaining)]},
        )


class OverlapException(AppException):
    """400 — conflicting pending/approved request for the same employee."""

    def __init__(self, start_date: Any, end_date: Any, status: str) -> None:
        super().__init__(
            status_code=400,
            error_type="overlap",
            title="Overlapping Leave",
            detail=(
                f"Leave overlaps with an existing {status} request "
                f"from {start_date} to {end_date}."
            ),
        )


class DocumentRequiredException(AppException):
    """400 — supporting documents required above the threshold."""

    def __init__(self, short_code: str, threshold: Decimal) -> None:
        super().__init__(
            status_code=400,
            error_type="document-required",
            title="Documents Required",
            detail=(
                f"Supporting documents are required for {short_code} leave "
                f"longer than {format_days(threshold)} day(s)."
            ),
            errors={"documents": ["At least one document must be attached."]},
        )


class UploadException(AppException):
    """400 — the document storage collaborator failed."""

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(
            status_code=400,
            error_type="upload-error",
            title="Upload Failed",
            detail=f"Could not upload '{filename}': {reason}",
        )


class InvalidTransitionException(AppException):
    """400 — leave status state-machine violation."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=400,
            error_type="invalid-transition",
            title="Invalid Status Transition",
            detail=detail,
        )


class PolicyConflictException(AppException):
    """400 — duplicate short code or invalid quota ordering."""

    def __init__(self, detail: str, field: Optional[str] = None) -> None:
        super().__init__(
            status_code=400,
            error_type="policy-conflict",
            title="Policy Conflict",
            detail=detail,
            errors={field: [detail]} if field else None,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    first_field, first_msgs = next(iter(field_errors.items()), ("unknown", ["Invalid value"]))
    return JSONResponse(
        status_code=400,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 400,
            "detail": f"{first_field}: {first_msgs[0]}",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
