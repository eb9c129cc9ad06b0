"""
API errors and the response envelope.

Every failure leaves the API as
``{ok: false, error: {code, status, message, details}, request_id, timestamp}``.
``code`` is a stable machine identifier (``INVALID_STATE``, ``NOT_FOUND``, ...)
so callers such as the admin dashboard can tell a retry conflict from a
missing job without parsing the message.
"""

import uuid
from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from formjobs.config.logging import add_request_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


class FormJobsException(Exception):
    """Base for errors that map onto an API response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(FormJobsException):
    """Input rejected before anything was stored."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "VALIDATION_ERROR"


class NotFoundError(FormJobsException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class InvalidStateError(FormJobsException):
    """The operation does not apply to the job's current status; nothing changed."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "INVALID_STATE"


class UnauthorizedError(FormJobsException):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", details: dict[str, Any] | None = None):
        super().__init__(message, details)


class ForbiddenError(FormJobsException):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden", details: dict[str, Any] | None = None):
        super().__init__(message, details)


def create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    return {
        "ok": False,
        "error": {
            "code": error_code,
            "status": status_code,
            "message": message,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _error_json(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(
            status_code, error_code, message, details, _request_id(request)
        ),
    )


def _status_error_code(status_code: int) -> str:
    """UNAUTHORIZED, METHOD_NOT_ALLOWED, ... for errors raised by the framework."""
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return "HTTP_ERROR"


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error through the same envelope."""

    @app.exception_handler(FormJobsException)
    async def form_jobs_exception_handler(request: Request, exc: FormJobsException):
        logger.warning(
            "Request rejected",
            error_code=exc.error_code,
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
        )
        return _error_json(
            request, exc.status_code, exc.error_code, exc.message, exc.details
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "loc": ".".join(str(part) for part in err["loc"]),
                "msg": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ]
        logger.warning("Request validation failed", errors=errors)
        return _error_json(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ValidationError.error_code,
            "Request validation failed",
            {"errors": errors},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
        return _error_json(
            request, exc.status_code, _status_error_code(exc.status_code), str(exc.detail)
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", exception=type(exc).__name__, exc_info=exc)
        return _error_json(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            FormJobsException.error_code,
            "Internal server error",
        )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id, reusing the caller's X-Request-ID when sent."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER, "")
        if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
