"""Domain errors and their normalized HTTP handlers."""

import logging
from datetime import date
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from essayplans.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def payload_details(self) -> dict:
        return {}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class InvalidPlanType(ValidationError):
    code = "invalid_plan_type"

    def __init__(self, plan_type: object):
        super().__init__(f"Invalid plan type: {plan_type!r}")
        self.plan_type = plan_type


class SubscriptionNotFound(NotFoundError):
    def __init__(self, subscription_id: object):
        super().__init__(f"Subscription {subscription_id} not found")
        self.subscription_id = subscription_id


class NoActiveSubscription(ConflictError):
    """Raised by cancel/suspend when the subscription is not active."""
    code = "no_active_subscription"


class NotSuspended(ConflictError):
    """Raised by reactivate when the subscription is not suspended."""
    code = "not_suspended"


class DuplicateActiveSubscription(ConflictError):
    code = "duplicate_active_subscription"


class QuotaExceeded(AppError):
    code = "quota_exceeded"
    status_code = 403

    def __init__(
        self,
        message: str,
        *,
        current: int,
        maximum: int,
        week_start: Optional[date] = None,
        week_end: Optional[date] = None,
    ):
        super().__init__(message)
        self.current = current
        self.maximum = maximum
        self.week_start = week_start
        self.week_end = week_end

    def payload_details(self) -> dict:
        details = {"current": self.current, "max": self.maximum}
        if self.week_start and self.week_end:
            # Sunday..Saturday range the count applies to
            details["week_start"] = self.week_start.isoformat()
            details["week_end"] = self.week_end.isoformat()
        return details


class StoreUnavailable(AppError):
    """Transport or transaction failure reported by the persistence layer."""
    code = "store_unavailable"
    status_code = 503


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[dict] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if details:
        error.update(details)
    return {
        "error": error,
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.payload_details())
    logger = logging.getLogger("essayplans")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("essayplans")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("essayplans")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
