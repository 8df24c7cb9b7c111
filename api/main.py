"""
api/main.py -- FastAPI application entry point for the auth service.

Run with:      uvicorn asgi:app --reload
               python main.py --port 8080

Lifespan builds every component from Settings and wires it onto app.state:

    app.state.user_store    UserStore (SQLAlchemy)
    app.state.cache         UserCache
    app.state.dispatcher    Dispatcher (welcome-mail pool)
    app.state.auth_service  AuthService composing the above

Shutdown is symmetric: wait (bounded) for queued welcome mails, then close
the database engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AlreadyExists,
    AuthError,
    InvalidCredentials,
    NotFound,
    TokenInvalid,
    UpstreamFailure,
)
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenService
from cache.store import UserCache
from core.config import Settings, get_settings, mask_db_url
from notify.dispatcher import Dispatcher
from notify.mailer import EmailNotifier

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authservice.api")

# AuthError subclass -> HTTP status. Checked in order, so subclasses first.
_STATUS_BY_ERROR: tuple[tuple[type[AuthError], int], ...] = (
    (AlreadyExists, 409),
    (InvalidCredentials, 401),
    (NotFound, 404),
    (TokenInvalid, 401),
    (UpstreamFailure, 503),
)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_auth_service(settings: Settings) -> AuthService:
    """Construct AuthService and its collaborators from settings."""
    notifier = EmailNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        from_email=settings.from_email,
        from_name=settings.from_name,
        use_tls=settings.smtp_use_tls,
        timeout=settings.smtp_timeout_seconds,
    )
    return AuthService(
        store=UserStore(settings.database_url),
        tokens=TokenService(
            settings.secret_key,
            timedelta(seconds=settings.token_expire_seconds),
            issuer=settings.token_issuer,
        ),
        cache=UserCache(ttl=settings.cache_ttl_seconds),
        dispatcher=Dispatcher(settings.notification_workers, name="welcome-mail"),
        notifier=notifier,
    )


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup; drain the mail pool and close the DB on shutdown."""
    settings = get_settings()
    logging.getLogger("authservice").setLevel(settings.log_level.upper())
    logger.info("Auth service starting up (database=%s)", mask_db_url(settings.database_url))

    service = build_auth_service(settings)
    app.state.auth_service = service
    app.state.user_store = service.store
    app.state.cache = service.cache
    app.state.dispatcher = service.dispatcher
    logger.info(
        "Auth initialized (token_ttl=%ss, cache_ttl=%ss, mail_workers=%d, smtp=%s)",
        settings.token_expire_seconds,
        settings.cache_ttl_seconds,
        settings.notification_workers,
        "on" if service.notifier.enabled else "off",
    )

    yield

    service.dispatcher.join(timeout=settings.shutdown_timeout_seconds)
    service.store.close()
    logger.info("Auth service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Auth Service",
    description="Registration, password login and bearer-token profile lookup.",
    version=__version__,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Latency is measured around call_next. Bodies are never logged --
# they carry passwords.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _status_for(exc: AuthError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate orchestrator errors into the error envelope.

    UpstreamFailure is logged with its cause; its response only names the
    failed operation. The other errors are expected outcomes and are not
    logged beyond the request line.
    """
    status = _status_for(exc)
    if isinstance(exc, UpstreamFailure):
        logger.error(
            "Upstream failure on %s %s: %s",
            request.method,
            request.url.path,
            exc.message,
            exc_info=exc.__cause__ or exc,
        )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, TokenInvalid) else None
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        headers=headers,
    )


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

    Dependencies raise HTTPException with a {code, message} dict as detail;
    use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database round-trip check."""
    try:
        db_ok = request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        db_ok = False
    dispatcher: Dispatcher = request.app.state.dispatcher
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        components={
            "app": "ok",
            "database": "ok" if db_ok else "error",
            "notifications": f"{dispatcher.in_flight}/{dispatcher.capacity} busy",
        },
    )
