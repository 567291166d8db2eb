"""
api/main.py -- FastAPI application entry point for authcore.

Exposes the auth core over HTTP. The orchestrator is transport-agnostic;
this module and api/routes/v1/auth.py are the only places that know about
cookies, status codes and headers.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every store and service from get_settings() on startup and
disposes the engines on shutdown.

SECRET_KEY is validated at import time (get_settings() below). A missing or
short key stops the process before it binds a port.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.email import EmailService
from auth.errors import ErrorCode
from auth.hashing import PasswordHasher
from auth.links import LinkTokenService
from auth.models import LinkTokenKind
from auth.orchestrator import AuthOrchestrator, EmailDispatcher
from auth.sessions import SessionRotationEngine
from auth.store import AuditStore, ConsentStore, UserStore
from auth.token_store import SecretTokenStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authcore.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, settings: Settings, mailer: EmailDispatcher | None = None) -> None:
    """Build the stores and services for one application instance and hang them on app.state.

    Order follows the dependency graph: stores, then the leaf services that
    use them, then the orchestrator that composes everything.
    """
    db_url = settings.database_url
    app.state.settings = settings
    app.state.user_store = UserStore(db_url)
    app.state.consent_store = ConsentStore(db_url)
    app.state.audit_store = AuditStore(db_url)
    app.state.token_store = SecretTokenStore(db_url)

    app.state.token_codec = TokenCodec(settings.secret_key, ttl_seconds=settings.access_token_ttl_seconds)
    sessions = SessionRotationEngine(
        app.state.token_store,
        app.state.token_codec,
        refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
    )
    if mailer is None:
        mailer = EmailService(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            base_url=settings.app_base_url,
        )
    app.state.mailer = mailer

    app.state.orchestrator = AuthOrchestrator(
        users=app.state.user_store,
        consents=app.state.consent_store,
        audit=app.state.audit_store,
        mailer=mailer,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        sessions=sessions,
        magic_links=LinkTokenService(
            app.state.token_store,
            LinkTokenKind.MAGIC_LINK,
            timedelta(seconds=settings.magic_link_ttl_seconds),
        ),
        password_resets=LinkTokenService(
            app.state.token_store,
            LinkTokenKind.PASSWORD_RESET,
            timedelta(seconds=settings.password_reset_ttl_seconds),
        ),
    )


def close_services(app: FastAPI) -> None:
    for name in ("user_store", "consent_store", "audit_store", "token_store"):
        store = getattr(app.state, name, None)
        if store is not None:
            store.close()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services on startup, dispose DB engines on shutdown."""
    logger.info("authcore API starting up")
    wire_services(app, get_settings())
    if not app.state.mailer.is_configured:
        logger.warning("SMTP not configured -- link emails will be logged, not sent")
    logger.info("Auth services initialized")

    yield

    close_services(app)
    logger.info("authcore API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authcore API",
    description="Credential issuance and session security: password and magic-link login, "
    "rotating device-bound refresh tokens, password reset.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
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
# All handlers return the same {"success": false, "error": {...}} envelope the
# auth flows use, so clients parse every failure the same way.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After.

    Plain def: SlowAPIMiddleware calls this handler directly, outside the
    normal exception middleware.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code=ErrorCode.RATE_LIMITED.value,
                message="Too many requests. Please try again later.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the request body fails schema validation.

    The offending input values are not echoed back; they may be passwords.
    """
    locations = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="VALIDATION_ERROR",
                message="Request validation failed.",
                detail=locations or None,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail; use it directly as
    the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"HTTP_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the server log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code=ErrorCode.INTERNAL_ERROR.value,
                message="An unexpected error occurred. Please try again later.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit -- load balancer health checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    database = "ok"
    try:
        with request.app.state.token_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
