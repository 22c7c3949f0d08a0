"""
api/main.py -- FastAPI application entry point for the Townzy marketplace API.

Exposes the identity registry and the category hierarchy over HTTP for the
mobile apps and the command-line client.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces default and per-route rate limits from api.limiter

Lifespan builds the two stores and the two domain services on startup and
closes the stores on shutdown. Route handlers reach them through app.state;
nothing is held in module globals.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse, ServiceInfo
from api.routes.v1.auth import router as auth_router
from api.routes.v1.categories import router as categories_router
from api.routes.v1.merchant import router as merchant_router
from api.routes.v1.merchant_categories import router as merchant_categories_router
from auth.registry import IdentityRegistry
from auth.store import PrincipalStore
from catalog.engine import HierarchyEngine
from catalog.store import CategoryStore
from core.config import get_settings
from core.errors import TownzyError

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("townzy.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters:
      1. Stores first -- creating them creates the tables (and seeds the
         system roots on a fresh catalog DB).
      2. Services second -- each wraps exactly one store.
    """
    logger.info("Townzy API starting up (version %s)", settings.app_version)
    app.state.principal_store = PrincipalStore(settings.auth_db_url)
    app.state.category_store = CategoryStore(settings.catalog_db_url)
    logger.info("Stores initialized")
    app.state.registry = IdentityRegistry(app.state.principal_store)
    app.state.hierarchy = HierarchyEngine(app.state.category_store, max_depth=settings.max_tree_depth)

    yield

    app.state.principal_store.close()
    app.state.category_store.close()
    logger.info("Townzy API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Townzy API",
    description="Customer and merchant accounts, and the three-level service category catalog.",
    version=settings.app_version,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives the latency.
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

app.include_router(auth_router, prefix="/api/v1", tags=["Customer Auth"])
app.include_router(merchant_router, prefix="/api/v1", tags=["Merchant Auth"])
app.include_router(categories_router, prefix="/api/v1", tags=["Categories"])
app.include_router(merchant_categories_router, prefix="/api/v1", tags=["Merchant Categories"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(TownzyError)
async def domain_error_handler(request: Request, exc: TownzyError) -> JSONResponse:
    """Render a domain failure. The status code comes from the error class."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    Sync on purpose: SlowAPIMiddleware calls this handler directly and
    returns its result without awaiting it.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the body, path or query fails validation."""
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for framework-raised HTTP errors (unknown route, bad method)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Service endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. Health is exempt from rate
# limiting -- load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    """Report liveness plus reachability of both databases. 503 when either is down."""
    components = {
        "app": "ok",
        "auth_database": "ok" if request.app.state.principal_store.ping() else "error",
        "catalog_database": "ok" if request.app.state.category_store.ping() else "error",
    }
    healthy = all(v == "ok" for v in components.values())
    body = HealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        components=components,
    )
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())


@limiter.exempt
@app.get("/", tags=["Health"], response_model=ServiceInfo)
def root() -> ServiceInfo:
    return ServiceInfo(version=settings.app_version)
