"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware: injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware: catches domain exceptions -> structured JSON errors
    3. CORSMiddleware: handles browser-based worker clients
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from keywork.domain.exceptions import (
    DuplicateOperationError,
    InsufficientFundsError,
    InvalidTransitionError,
    KeyWorkError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitExceededError,
    UnauthenticatedError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Most specific first; the first isinstance match wins.
STATUS_CODES: tuple[tuple[type[KeyWorkError], int], ...] = (
    (ValidationError, 400),
    (UnauthenticatedError, 401),
    (InsufficientFundsError, 402),
    (UnauthorizedError, 403),
    (NotFoundError, 404),
    (PreconditionFailedError, 404),
    (InvalidTransitionError, 409),
    (DuplicateOperationError, 409),
    (RateLimitExceededError, 429),
    (UpstreamUnavailableError, 502),
)


def status_for(exc: KeyWorkError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


def error_response(exc: KeyWorkError) -> JSONResponse:
    """Render a domain error as ``{"error": code, "message": text}``."""
    response = JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.code, "message": exc.message},
    )
    if isinstance(exc, RateLimitExceededError):
        response.headers["Retry-After"] = str(exc.retry_after_seconds)
    return response


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except KeyWorkError as exc:
            status_code = status_for(exc)
            log = logger.error if status_code >= 500 else logger.warning
            log("request.domain_error", code=exc.code, error=exc.message, status=status_code)
            return error_response(exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters: middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
