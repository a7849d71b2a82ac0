"""
api/main.py -- FastAPI application entry point for shopfront.

Run with:  uvicorn asgi:app --reload

Middleware (outermost first): request logging, SlowAPI rate limits, CORS,
then TrustedHost rejecting unexpected Host headers.

Lifespan builds the stores, the mailer and the identity provider once and
hangs them on app.state; shutdown closes the stores.

Every failure leaves through one of the exception handlers below, so clients
always receive the same error envelope.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.products import router as products_router
from auth.mailer import EmailService, Mailer
from auth.providers import IdentityProvider, LocalIdentityProvider
from auth.store import ProfileStore
from auth.supabase import SupabaseIdentityProvider
from auth.tokens import CredentialService
from catalog.store import CatalogStore
from core.clock import Clock, utc_now
from core.config import Settings, get_settings
from core.errors import AppError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("shopfront.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Identity backend
# ---------------------------------------------------------------------------


def build_identity_provider(
    settings: Settings,
    profiles: ProfileStore,
    mailer: Mailer,
    clock: Clock = utc_now,
) -> IdentityProvider:
    """Return the provider selected by settings.identity_backend.

    This is the only place that looks at the backend setting. Routes and the
    authorization gate see an IdentityProvider and nothing else.
    """
    if settings.identity_backend == "supabase":
        return SupabaseIdentityProvider(settings.supabase_url, settings.supabase_anon_key, profiles, mailer)
    return LocalIdentityProvider(
        profiles,
        CredentialService.from_settings(settings, clock),
        mailer,
        verification_hours=settings.verification_token_hours,
        reset_hours=settings.reset_token_hours,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build application-level resources on startup; release them on shutdown."""
    logger.info("shopfront API starting up")
    app.state.profiles = ProfileStore(settings.database_url)
    app.state.catalog = CatalogStore(settings.database_url)
    app.state.mailer = EmailService(settings)
    app.state.identity_provider = build_identity_provider(settings, app.state.profiles, app.state.mailer)
    logger.info("Identity backend: %s", settings.identity_backend)

    yield

    app.state.catalog.close()
    app.state.profiles.close()
    logger.info("shopfront API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="shopfront API",
    description="Storefront backend: accounts, catalog administration and public product browsing.",
    version=VERSION,
    lifespan=lifespan,
    # Interactive docs only in development.
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each new middleware around the previous ones, so the last
# one added sees the request first.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
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

app.include_router(auth_router, tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
app.include_router(products_router, prefix="/api/v1", tags=["Products"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Each handler renders ErrorResponse: {"success": false, "message", "error"}.
# ---------------------------------------------------------------------------


def error_response(
    status_code: int,
    code: str,
    message: str,
    detail: Optional[str] = None,
    fields: Optional[dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            message=message,
            error=ErrorDetail(code=code, message=message, detail=detail, fields=fields),
        ).model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a service-layer error. 5xx are logged with their cause."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message, exc_info=exc)
    return error_response(exc.status_code, exc.code, exc.message, fields=exc.fields)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = error_response(429, "rate_limited", "Too many requests.", detail=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


def _field_name(loc: tuple) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "body"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one message per offending field."""
    fields: dict[str, str] = {}
    for error in exc.errors():
        fields.setdefault(_field_name(tuple(error.get("loc", ()))), error.get("msg", "Invalid value"))
    return error_response(422, "validation_error", "Request validation failed.", fields=fields)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for routing misses and any HTTPException a route raises."""
    if isinstance(exc.detail, dict):
        code = str(exc.detail.get("code", f"http_{exc.status_code}"))
        message = str(exc.detail.get("message", ""))
    else:
        code, message = f"http_{exc.status_code}", str(exc.detail)
    response = error_response(exc.status_code, code, message)
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Liveness check. Unauthenticated and not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
