"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — binds X-Request-ID to the log context, logs completion
    2. ErrorHandlerMiddleware — maps StreamPayError subclasses to {error, message} JSON
    3. CORSMiddleware — handles the dashboard's browser requests
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from streampay_escrow.domain.exceptions import (
    ConflictError,
    EscrowNotFoundError,
    ForbiddenError,
    InvalidMilestonePlanError,
    InvalidStateTransitionError,
    MilestoneNotFoundError,
    StreamPayError,
)
from streampay_escrow.logging_config import bind_request_context, get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi import FastAPI, Request, Response

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# First match wins, so subclasses precede their bases.
ERROR_STATUS: tuple[tuple[type[StreamPayError], int, str], ...] = (
    (EscrowNotFoundError, 404, "request.not_found"),
    (MilestoneNotFoundError, 404, "request.not_found"),
    (InvalidStateTransitionError, 409, "request.invalid_transition"),
    (ConflictError, 409, "request.conflict"),
    (ForbiddenError, 403, "request.forbidden"),
    (InvalidMilestonePlanError, 400, "request.invalid_plan"),
)


def status_for(exc: StreamPayError) -> tuple[int, str]:
    """HTTP status and log event name for a domain error."""
    for error_type, status_code, event in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, event
    return 400, "request.domain_error"


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Correlate every log line of a request (and its background work) by id."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_request_context(request_id, method=request.method, path=request.url.path)

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            "request.completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
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
        except StreamPayError as exc:
            status_code, event = status_for(exc)
            log = logger.warning if status_code != 400 else logger.info
            log(event, code=exc.code, error=exc.message)
            return JSONResponse(
                status_code=status_code,
                content={"error": exc.code, "message": exc.message},
            )
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
def setup_middleware(app: FastAPI, allow_origins: Sequence[str] = ("*",)) -> None:
    """Register all middleware; the last one added runs outermost."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allow_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
