"""
Application errors and the handlers that render them.

Every error response has the same body:

    {"error": {"code", "message", "request_id"}, "detail": message}

and carries the request id in the x-request-id header.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from relay.core.logging import get_logger, get_request_id


class AppError(Exception):
    """Base for errors that map to an HTTP status and a stable code."""
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class ServiceUnavailableError(AppError):
    code = "service_unavailable"
    status_code = 503


class UpstreamError(AppError):
    code = "upstream_error"
    status_code = 502


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    rid = _request_id(request)
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    get_logger().log(
        level,
        "request.error",
        extra={"request_id": rid, "error_code": code, "status": status_code, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "request_id": rid}, "detail": message},
        headers={"x-request-id": rid},
    )


async def app_error_handler(request: Request, exc: AppError):
    return error_response(request, exc.status_code, exc.code, exc.message)


async def http_error_handler(request: Request, exc: HTTPException):
    code = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "http_error")
    return error_response(request, exc.status_code, code, str(exc.detail or "HTTP error"))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid')}" if location else "Invalid request body"
    return error_response(request, 400, "validation_error", message)


async def unhandled_exception_handler(request: Request, exc: Exception):
    get_logger().error("unhandled.exception", exc_info=exc, extra={"request_id": _request_id(request)})
    return error_response(request, 500, "internal_error", "Unexpected error")
