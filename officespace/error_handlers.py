import logging
from typing import Dict, List

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import LockTimeout, ValidationFailed

logger = logging.getLogger(__name__)


def field_errors(errors) -> Dict[str, List[str]]:
    """Group pydantic errors by dotted field path, e.g. ``tags.0``."""
    grouped: Dict[str, List[str]] = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) if loc else "body"
        grouped.setdefault(field, []).append(error.get("msg", "Invalid value"))
    return grouped


def register_exception_handlers(app):
    """
    Register global exception handlers for standardized error responses.
    """

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation error",
                "detail": "Invalid request data",
                "path": str(request.url.path),
                "errors": field_errors(exc.errors()),
            },
        )

    @app.exception_handler(ValidationFailed)
    async def validation_failed_handler(request: Request, exc: ValidationFailed):
        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation error",
                "detail": str(exc),
                "path": str(request.url.path),
                "errors": exc.errors,
            },
        )

    @app.exception_handler(LockTimeout)
    async def lock_timeout_handler(request: Request, exc: LockTimeout):
        logger.warning("Lock timeout on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            headers={"Retry-After": "1"},
            content={
                "error": "Service unavailable",
                "detail": "The office is busy with another booking. Please try again.",
                "path": str(request.url.path),
            },
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={
                "error": "too_many_requests",
                "detail": "Rate limit exceeded. Please try again later.",
                "path": str(request.url.path),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
            content={
                "error": "HTTP error",
                "detail": exc.detail,
                "path": str(request.url.path),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": "An unexpected error occurred",
                "path": str(request.url.path),
            },
        )
