from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.sanitize import sanitize_for_log

logger = logging.getLogger("rp.errors")


class PipelineError(Exception):
    """Base for every error that maps onto a stable `{error: str}` response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        self.message = message or self.default_message
        self.headers: dict[str, str] = dict(headers or {})
        super().__init__(self.message)


class AuthenticationFailure(PipelineError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class PermissionDenied(PipelineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient role"


class RateLimited(PipelineError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded"


class MalformedPayload(PipelineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid payload structure"


class ExtractionError(PipelineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Required field missing from webhook payload"


class RequiredFieldError(ExtractionError):
    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required")


class NotFound(PipelineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InvariantViolation(PipelineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not allowed in the current state"


class InternalError(PipelineError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransitionTableError(RuntimeError):
    """The transition table itself is malformed. Raised at import/startup, never per request."""


def error_response(exc: PipelineError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=exc.headers or None)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PipelineError)
    async def _pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "request_failed",
                extra={"path": request.url.path, "error": sanitize_for_log(exc.message)},
            )
        return error_response(exc)

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "Invalid request"
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg', 'invalid value')}" if location else str(first.get("msg"))
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            extra={
                "path": request.url.path,
                "error_type": type(exc).__name__,
                "error": sanitize_for_log(str(exc)),
            },
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )
