"""
api/main.py -- FastAPI application entry point for Chirp.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. SessionMiddleware     -- resolves the session cookie into request.state.auth

Lifespan acquires every process-wide resource (hasher pool, credential store,
session store, sweep task) on startup and releases them symmetrically on
shutdown. Nothing is created at import time, so tests can point
DATABASE_URL somewhere else before entering the lifespan.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.codec import CachedPrincipalCodec, StorePrincipalCodec
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.strategy import AuthenticationStrategy
from core.config import get_settings
from core.errors import HashingFailure, StoreUnavailable
from sessions.manager import SessionManager
from sessions.middleware import SessionMiddleware
from sessions.store import SessionStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("chirp.api")

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired session rows every `interval` seconds.

    Correctness never depends on this loop: SessionStore.get() already treats
    expired rows as absent. The sweep only keeps the table from growing.
    A failed sweep is logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await app.state.session_store.sweep_expired()
        except StoreUnavailable:
            logger.warning("Session sweep skipped: store unavailable")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Acquire shared handles at startup, release them at shutdown.

    Startup order matters:
      1. Hasher first -- computing its dummy hash is the slowest step, and
         the strategy needs it.
      2. Stores next -- both create their tables if missing.
      3. SessionManager wires stores, strategy and codec together.
      4. Sweep task last -- it references app.state.session_store.
    """
    settings = get_settings()
    logger.info("Chirp API starting up")

    app.state.hasher = PasswordHasher(rounds=settings.bcrypt_rounds, max_workers=settings.hash_workers)
    app.state.credential_store = CredentialStore(settings.database_url, timeout=settings.store_timeout_seconds)
    app.state.session_store = SessionStore(
        settings.database_url,
        secret_key=settings.secret_key,
        timeout=settings.store_timeout_seconds,
    )
    if settings.revalidate_sessions:
        codec = StorePrincipalCodec(app.state.credential_store)
    else:
        codec = CachedPrincipalCodec()
    app.state.sessions = SessionManager(
        app.state.session_store,
        AuthenticationStrategy(app.state.credential_store, app.state.hasher),
        codec,
        ttl_seconds=settings.session_ttl_seconds,
        rolling=settings.session_rolling,
    )
    logger.info(
        "Auth initialized (bcrypt_rounds=%d, session_ttl=%ds, rolling=%s, revalidate=%s)",
        settings.bcrypt_rounds,
        settings.session_ttl_seconds,
        settings.session_rolling,
        settings.revalidate_sessions,
    )
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_seconds))

    yield

    # Shutdown
    app.state.sweep_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await app.state.sweep_task
    app.state.session_store.close()
    app.state.credential_store.close()
    app.state.hasher.close()
    logger.info("Chirp API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Chirp API",
    description="Credential login and server-side sessions.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the LAST call is outermost.
# Register innermost first: Session -> SlowAPI -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SessionMiddleware)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=get_settings().allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Never logs cookies, headers or bodies: they carry session tokens and secrets.
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
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly. None of them echo exception text for server-side failures.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when request body or query params fail validation.

    Only field locations and messages are returned; submitted values (which
    may include a secret) are dropped.
    """
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return _error(422, "validation_error", "Request validation failed.", str(errors))


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """Outage, not an auth failure: 503 so operators can tell the two apart."""
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return _error(503, "store_unavailable", "Service temporarily unavailable.")


@app.exception_handler(HashingFailure)
async def hashing_failure_handler(request: Request, exc: HashingFailure) -> JSONResponse:
    """Corrupt stored hash. Fail closed with a generic 500."""
    logger.error("Corrupt credential record encountered on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and database reachability."""
    try:
        await request.app.state.credential_store.ping()
        database = "ok"
    except StoreUnavailable:
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components={"app": "ok", "database": database})
