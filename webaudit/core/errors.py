"""Error normalization and handlers."""

import logging
import builtins
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from webaudit.core.logging import get_request_id

logger = logging.getLogger("webaudit.errors")


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


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class UserNotFoundError(NotFoundError):
    """No user row exists for the requested id."""
    code = "user_not_found"

    def __init__(self, user_id: str, **kwargs):
        super().__init__(f"User {user_id} not found", **kwargs)
        self.user_id = user_id


class NoPlanAvailableError(AppError):
    """Configuration error: not even an active Starter plan exists."""
    code = "no_plan_available"
    status_code = 500


class DatabaseUnavailableError(AppError):
    code = "database_unavailable"
    status_code = 503


class LedgerWriteError(AppError):
    """Ledger insert failed. Logged and reported, never raised past the job."""
    code = "ledger_write_failed"
    status_code = 500


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _json_error(rid: str, status_code: int, code: str, message: str, level: int, **log_extra) -> JSONResponse:
    logger.log(
        level,
        f"[errors] {code}",
        extra={"request_id": rid, "error_code": code, "status": status_code, **log_extra},
    )
    response = JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "request_id": rid}, "detail": message},
    )
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    extra = {"user_id": exc.user_id} if isinstance(exc, UserNotFoundError) else {}
    rid = exc.request_id or _request_id_for(request)
    return _json_error(rid, exc.status_code, exc.code, exc.message, level, **extra)


_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found"}


async def http_error_handler(request: Request, exc: HTTPException):
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    message = exc.detail if exc.detail else "HTTP error"
    return _json_error(_request_id_for(request), exc.status_code, code, message, logging.WARNING)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("[errors] unhandled exception", exc_info=exc)
    return _json_error(_request_id_for(request), 500, "internal_error", "Unexpected error", logging.ERROR)
