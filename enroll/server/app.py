"""FastAPI application factory for one enrollment session.

``create_app()`` wires the session's collaborators into ``app.state`` and
registers the error handlers that turn request-level exceptions into the
JSON bodies the page expects. The lifespan owns the rate limiter's sweep
task: it starts when the listener starts and is cancelled when it stops.

Docs and OpenAPI routes are disabled; the listener exposes exactly the
enrollment routes.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from enroll.constants import (
    DEFAULT_API_TIMEOUT_S,
    MSG_INTERNAL_ERROR,
    MSG_METHOD_NOT_ALLOWED,
    RATE_LIMIT_SWEEP_INTERVAL_S,
)
from enroll.credentials.store import CredentialStore
from enroll.credentials.validator import CredentialValidator
from enroll.errors import CSRFMismatch, EnrollmentError, MalformedRequest, RateLimited
from enroll.server.limiter import RateLimiter
from enroll.server.routes import router
from enroll.server.session import SessionState
from enroll.utils.logger import get_logger

logger = get_logger(__name__)

# HTTP status for request-level errors that escape a handler
_ERROR_STATUS: dict[type[EnrollmentError], int] = {
    CSRFMismatch: 403,
    RateLimited: 429,
    MalformedRequest: 400,
}


def _status_for(exc: EnrollmentError) -> int:
    for exc_type, status in _ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return status
    return 500


def create_app(
    session: SessionState,
    limiter: RateLimiter,
    store: CredentialStore,
    validator: CredentialValidator,
    *,
    remote_timeout_s: float = DEFAULT_API_TIMEOUT_S,
    sweep_interval_s: float = RATE_LIMIT_SWEEP_INTERVAL_S,
) -> FastAPI:
    """Create the FastAPI application serving one session.

    Call directly in tests and drive it with ``httpx.ASGITransport``; the
    lifespan (and therefore the sweep task) only runs under a real listener.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        limiter.start_sweeper(sweep_interval_s)
        logger.debug("Rate limiter sweep started", interval_s=sweep_interval_s)
        try:
            yield
        finally:
            await limiter.stop_sweeper()
            logger.debug("Rate limiter sweep stopped")

    application = FastAPI(
        title="enroll",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    application.state.session = session
    application.state.limiter = limiter
    application.state.store = store
    application.state.validator = validator
    application.state.remote_timeout_s = remote_timeout_s

    application.include_router(router)

    @application.exception_handler(EnrollmentError)
    async def enrollment_error_handler(request: Request, exc: EnrollmentError) -> JSONResponse:
        status = _status_for(exc)
        if status == 500:
            logger.error(
                "Unhandled enrollment error",
                error=exc.message,
                error_type=type(exc).__name__,
                path=str(request.url.path),
            )
            return JSONResponse(status_code=500, content={"success": False, "error": MSG_INTERNAL_ERROR})
        return JSONResponse(status_code=status, content={"success": False, "error": exc.message})

    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = MSG_METHOD_NOT_ALLOWED if exc.status_code == 405 else exc.detail
        logger.debug("HTTP exception", status_code=exc.status_code, path=str(request.url.path))
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": detail},
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content={"success": False, "error": MSG_INTERNAL_ERROR})

    return application
