"""
Custom exception hierarchy for the analytics engine.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from app.core.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class AnalyticsException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidScopeError(AnalyticsException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "INVALID_SCOPE"

    def __init__(self, message: str, scope: str | None = None, entity_id: str | None = None):
        details: dict[str, Any] = {}
        if scope is not None:
            details["scope"] = scope
        if entity_id is not None:
            details["id"] = entity_id
        super().__init__(message=message, details=details)


class InvalidDateRangeError(AnalyticsException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "INVALID_DATE_RANGE"

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            details={k: str(v) for k, v in details.items() if v is not None},
        )


class RangeTooLargeError(AnalyticsException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "RANGE_TOO_LARGE"

    def __init__(self, max_days: int, received_days: int):
        super().__init__(
            message=(
                f"Date range exceeds maximum of {max_days} days. "
                f"Received {received_days} days."
            ),
            details={"max_days": max_days, "received_days": received_days},
        )


class ComputationFailureError(AnalyticsException):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "COMPUTATION_FAILURE"

    def __init__(
        self,
        organization_id: str,
        metric_type: str,
        window: str | None = None,
        reason: str | None = None,
    ):
        details: dict[str, Any] = {
            "organization_id": organization_id,
            "metric_type": metric_type,
        }
        if window:
            details["window"] = window
        if reason:
            details["reason"] = reason
        super().__init__(
            message=f"Failed to compute {metric_type} metrics.",
            details=details,
        )


class OrganizationNotFoundError(AnalyticsException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "ORGANIZATION_NOT_FOUND"

    def __init__(self, organization_id: str):
        super().__init__(
            message=f"Organization {organization_id} not found.",
            details={"organization_id": organization_id},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def analytics_exception_handler(request: Request, exc: AnalyticsException) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, **exc.details)
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
