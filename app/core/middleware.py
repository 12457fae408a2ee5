"""Security middleware for the admin API.

This module provides rate limiting, security headers and the JSON error
handlers that render every error as {"error": "..."}.
"""

import logging
import traceback
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.sentry import capture_business_error

logger = logging.getLogger(__name__)

# Module-level so routes can decorate with @limiter.limit(...)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    storage_uri=settings.RATE_LIMIT_STORAGE_URL,
    strategy="fixed-window",
    headers_enabled=True,  # Send rate limit info in headers
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Add security headers to the response."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        # HSTS - only in production (requires HTTPS)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        # JSON-only API, nothing should ever be rendered or framed
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        return response


def configure_rate_limiting(app: FastAPI) -> Limiter:
    """
    Attach the shared limiter to the application.

    Args:
        app: The FastAPI application instance

    Returns:
        The configured Limiter instance for use in route decorators
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    return limiter


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as {"error": detail}; unknown routes get a descriptive 404."""
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Route {request.url.path} not found"
    else:
        message = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", []) if part != "body")
    message = f"Invalid {field}: {first.get('msg')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler.

    Stack traces are only returned in development with DEBUG on.
    """
    capture_business_error(
        error=exc,
        context={"path": request.url.path, "method": request.method},
        level="error",
    )

    content = {"error": "Internal server error"}
    if settings.is_development and settings.DEBUG:
        content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    return JSONResponse(status_code=500, content=content)


def configure_error_handlers(app: FastAPI) -> None:
    """
    Register the JSON error handlers.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


def add_security_headers(app: FastAPI) -> None:
    """
    Add security headers middleware to the application.

    Args:
        app: The FastAPI application instance
    """
    app.add_middleware(SecurityHeadersMiddleware)
