"""
Bike Benefit Engine - Error Handling

Centralized error vocabulary and structured error responses.
Every error body has the shape {"error": <code>, "reason"?: <code>, ...extra}.

Status code conventions:
    400 malformed/missing input
    401 missing/invalid credential
    403 unauthorized or tenant missing
    404 unknown resource
    409 workflow rule violation
    500 upstream dependency failure
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .middleware import get_request_id

logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

# Auth
ERROR_FORBIDDEN = "forbidden"
REASON_NO_PERMISSION = "no_permission_to_access_this_data"
ERROR_INVALID_JWT = "invalid_jwt"
ERROR_ROLE_LOOKUP_FAILED = "role_lookup_failed"

# IO / parsing
ERROR_MISSING_BOUNDARY = "missing_boundary"
ERROR_NO_FILE = "no_file"
ERROR_EMPTY_CSV = "empty_csv"
ERROR_NO_ROWS = "no_rows"
ERROR_MISSING_HEADER = "missing_header"
ERROR_BAD_REQUEST = "bad_request"

# General
ERROR_NOT_FOUND = "not_found"
ERROR_INTERNAL = "internal_error"

# Registration
ERROR_NOT_INVITED = "not_invited"
ERROR_EMAIL_REQUIRED = "email_required"
ERROR_OTP_FAILED = "otp_send_failed"

# Profile / company
ERROR_PROFILE_FETCH_FAILED = "profile_fetch_failed"
ERROR_PROFILE_NOT_FOUND = "profile_not_found"
ERROR_NO_COMPANY = "no_company_assigned"

# Workflow
ERROR_INVALID_TRANSITION = "invalid_transition"
ERROR_BENEFIT_FROZEN = "benefit_frozen"
ERROR_STORE_FAILED = "store_failed"


# =============================================================================
# Exceptions
# =============================================================================


class BenefitEngineError(Exception):
    """Base exception for errors that map onto a structured HTTP response."""

    def __init__(
        self,
        error: str = ERROR_INTERNAL,
        status_code: int = 500,
        reason: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        super().__init__(reason or error)
        self.error = error
        self.status_code = status_code
        self.reason = reason
        self.extra = extra or {}

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.reason is not None:
            body["reason"] = self.reason
        body.update(self.extra)
        return body


class InvalidCredentialError(BenefitEngineError):
    """Missing or malformed bearer credential."""

    def __init__(self) -> None:
        super().__init__(ERROR_INVALID_JWT, status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(BenefitEngineError):
    """Caller is authenticated but not allowed to perform the action."""

    def __init__(self, error: str = ERROR_FORBIDDEN, reason: str | None = REASON_NO_PERMISSION):
        super().__init__(error, status.HTTP_403_FORBIDDEN, reason=reason)


class RoleLookupFailedError(BenefitEngineError):
    def __init__(self) -> None:
        super().__init__(ERROR_ROLE_LOOKUP_FAILED, status.HTTP_500_INTERNAL_SERVER_ERROR)


class BadRequestError(BenefitEngineError):
    """Input cannot be interpreted at all."""

    def __init__(self, error: str = ERROR_BAD_REQUEST, **extra: Any):
        super().__init__(error, status.HTTP_400_BAD_REQUEST, extra=extra)


class NotFoundError(BenefitEngineError):
    def __init__(self, path: str | None = None):
        super().__init__(
            ERROR_NOT_FOUND,
            status.HTTP_404_NOT_FOUND,
            extra={"path": path} if path else None,
        )


class ProfileNotFoundError(ForbiddenError):
    def __init__(self) -> None:
        super().__init__(ERROR_PROFILE_NOT_FOUND, reason=None)


class NoCompanyAssignedError(ForbiddenError):
    def __init__(self) -> None:
        super().__init__(ERROR_NO_COMPANY, reason=None)


class UpstreamError(BenefitEngineError):
    """A dependency failed during the gating phase of a request."""

    def __init__(self, error: str, **extra: Any):
        super().__init__(error, status.HTTP_500_INTERNAL_SERVER_ERROR, extra=extra)


class WorkflowViolation(BenefitEngineError):
    """An attempted write breaks the benefit or contract workflow."""

    def __init__(self, reason: str, error: str = ERROR_INVALID_TRANSITION, **extra: Any):
        super().__init__(error, status.HTTP_409_CONFLICT, reason=reason, extra=extra)


class BenefitFrozenError(WorkflowViolation):
    """Step progression on a terminated or insurance-claim benefit."""

    def __init__(self, reason: str):
        super().__init__(reason, error=ERROR_BENEFIT_FROZEN)


# =============================================================================
# Exception Handlers
# =============================================================================

_STATUS_ERROR_MAP = {
    400: ERROR_BAD_REQUEST,
    401: ERROR_INVALID_JWT,
    403: ERROR_FORBIDDEN,
    404: ERROR_NOT_FOUND,
    405: "method_not_allowed",
}


async def benefit_engine_error_handler(request: Request, exc: BenefitEngineError) -> JSONResponse:
    """Render a BenefitEngineError as its structured body."""
    if exc.status_code >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc.error}",
            extra={"request_id": get_request_id(), "error_code": exc.error},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Map framework HTTP errors onto the same {error, ...} shape."""
    error_code = _STATUS_ERROR_MAP.get(exc.status_code, ERROR_INTERNAL)
    content: dict[str, Any] = {"error": error_code}
    if exc.status_code == 404:
        content["path"] = request.url.path
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body/query validation failures are input-shape errors (400)."""
    details = []
    for error in exc.errors():
        loc = error.get("loc", [])
        details.append(
            {
                "field": ".".join(str(x) for x in loc) if loc else None,
                "message": error.get("msg", "Validation error"),
            }
        )

    logger.warning(
        f"Validation error on {request.url.path}: {len(details)} errors",
        extra={"request_id": get_request_id(), "count": len(details)},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": ERROR_BAD_REQUEST, "details": details},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unhandled exceptions.

    Logs the full traceback but returns a generic error to the client.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        extra={"request_id": get_request_id()},
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": ERROR_INTERNAL, "request_id": get_request_id() or None},
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(BenefitEngineError, benefit_engine_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
