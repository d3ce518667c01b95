"""
api/main.py -- FastAPI application entry point for campgate.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost; the last one added wraps the rest):
  1. log_requests      -- one access-log line per request
  2. limit_body_size   -- 413 for bodies over MAX_BODY_BYTES (16 KiB default)
  3. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware    -- credentialed CORS for the configured frontend origins

Lifespan opens the UserStore and builds the Mailer on startup and closes the
store on shutdown. Both live on app.state; nothing is a module-level
singleton, so tests swap them by replacing the lifespan.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorResponse, envelope
from api.routes.v1.auth import router as auth_router
from api.routes.v1.projects import router as projects_router
from auth.mail import Mailer
from auth.store import UserStore
from core.config import get_settings
from core.errors import ApiError

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("campgate.api")

_settings = get_settings()

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the credential store and mailer for the server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown, even if a request handler raised.
    """
    logger.info("campgate API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.mailer = Mailer.from_settings(_settings)
    logger.info("Auth initialized (smtp_configured=%s)", app.state.mailer.is_configured)
    if not app.state.mailer.is_configured and not _settings.debug:
        logger.warning("SMTP_HOST is not set: verification and reset mails will not be delivered")

    yield

    app.state.user_store.close()
    logger.info("campgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="campgate API",
    description="Registration, login, email verification, password reset and JWT session renewal.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


_BODY_METHODS = {"POST", "PUT", "PATCH"}


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    """Refuse request bodies over max_body_bytes before any handler parses them."""
    limit = _settings.max_body_bytes
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            too_large = int(declared) > limit
        except ValueError:
            return _error(400, "Invalid Content-Length header")
    elif request.method in _BODY_METHODS:
        # Chunked upload: read it once; Starlette replays the cached body downstream.
        too_large = len(await request.body()) > limit
    else:
        too_large = False
    if too_large:
        logger.warning("Rejected %s %s: body exceeds %d bytes", request.method, request.url.path, limit)
        return _error(413, "Request body too large")
    return await call_next(request)


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
app.include_router(projects_router, prefix="/api/v1", tags=["Projects"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly:
#   {"statusCode": ..., "data": null, "message": ..., "success": false, "errors": [...]}
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, errors: list | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(status_code=status_code, message=message, errors=errors or []).model_dump(by_alias=True),
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render flow-level failures raised by auth/ (service, store, guard)."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one {field: message} entry per validation failure."""
    errors = [
        {".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body": err.get("msg", "Invalid value")}
        for err in exc.errors()
    ]
    return _error(422, "Received data is not valid", errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return the envelope for FastAPI/Starlette HTTP exceptions (404 route, 405 method...)."""
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/healthcheck", tags=["Health"])
def healthcheck(request: Request) -> JSONResponse:
    """Report liveness plus a database round trip."""
    try:
        database = "ok" if request.app.state.user_store.ping() else "error"
    except Exception:
        logger.exception("Health check database ping failed")
        database = "error"
    status_code = 200 if database == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content=envelope(
            status_code,
            {"message": "Server is Running", "version": _VERSION, "components": {"app": "ok", "database": database}},
        ),
    )
