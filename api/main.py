"""
api/main.py -- FastAPI application entry point.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- assigns a request id and logs every response

Lifespan handles startup (connect with bounded retry, create schema, seed the
access rule catalog, pick a notifier) and shutdown (dispose the engine).

Error mapping (ServiceError family -> HTTP status):
  CodeNotExpiredError 429, WrongPasswordError 403, NotFoundError 404,
  SoftDeletedError 404, ConflictError 409, CredentialError 400,
  TokenError 401, InternalError 500.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.orgs import router as orgs_router
from auth.service import build_services
from auth.sms import build_notifier
from auth.store import connect_with_retry
from core.config import get_settings
from core.errors import (
    CodeNotExpiredError,
    ConflictError,
    CredentialError,
    InternalError,
    NotFoundError,
    ServiceError,
    SoftDeletedError,
    TokenError,
    WrongPasswordError,
)

VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("orgauth.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the store and services across the full server lifetime.

    Startup order matters: the store must be reachable before the rule
    catalog can be seeded, and the services need both store and notifier.
    """
    logger.info("orgauth API starting up")
    store = connect_with_retry(
        _settings.database_url,
        retries=_settings.db_connect_retries,
        backoff_seconds=_settings.db_connect_backoff_seconds,
    )
    app.state.services = build_services(
        store,
        build_notifier(_settings),
        code_ttl=timedelta(seconds=_settings.code_ttl_seconds),
    )
    logger.info("Auth services initialized")

    yield

    app.state.services.close()
    logger.info("orgauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="orgauth API",
    description="Phone-verified accounts, organizations and access rules.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request gets an id (client-supplied X-Request-ID is honoured) that is
# echoed back in the response and quoted in 500 bodies, so a user report can
# be matched to the server log line.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s %d %.1fms %s %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        request_id,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(orgs_router, prefix="/api/v1", tags=["Orgs"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Checked in order; the first matching class wins, so subclasses come first.
_STATUS_BY_ERROR: tuple[tuple[type[ServiceError], int], ...] = (
    (CodeNotExpiredError, 429),
    (WrongPasswordError, 403),
    (NotFoundError, 404),
    (SoftDeletedError, 404),
    (ConflictError, 409),
    (CredentialError, 400),
    (TokenError, 401),
    (InternalError, 500),
)


def status_for(exc: ServiceError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _internal_error_response(request: Request) -> JSONResponse:
    rid = _request_id(request)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message=f"unexpected error, request-id: {rid}",
            )
        ).model_dump(),
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Translate a classified core failure into its HTTP status.

    Internal errors are logged with their cause chain and answered with an
    opaque message; everything else echoes the error's code and message.
    """
    status = status_for(exc)
    if status == 500:
        logger.error(
            "Internal error on %s %s (request-id %s)",
            request.method,
            request.url.path,
            _request_id(request),
            exc_info=exc,
        )
        return _internal_error_response(request)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    if status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail ({"code", "message"});
    use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception(
        "Unhandled exception on %s %s (request-id %s)", request.method, request.url.path, _request_id(request)
    )
    return _internal_error_response(request)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No authentication required.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = "ok"
    try:
        request.app.state.services.store.ping()
    except Exception:
        logger.warning("Health check: database ping failed", exc_info=True)
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components={"app": "ok", "database": database})
