"""
api/main.py -- FastAPI application entry point for Gatekeeper.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- adds CORS headers for allowed browser origins
  2. log_requests   -- one access log line per request with latency

Lifespan handles startup (engine + schema, Redis, service wiring, token purge
task) and shutdown (cancel purge task, close Redis, dispose engine)
symmetrically. Every long-lived handle is created here and injected into the
objects that use it; nothing below api/ holds a module-level connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.dependencies import get_session_manager, session_id_from
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import TokenStore, UserStore, create_schema, make_engine
from auth.tokens import ResetTokenIssuer
from cache.store import CacheStore, connect_redis
from core.config import Settings, get_settings
from core.errors import AuthError, ServerError, ValidationError
from core.mailer import Mailer

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatekeeper.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, settings: Settings, engine: AsyncEngine, redis: Optional[Redis]) -> None:
    """Build the stores and AuthService around the given handles and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both run the same
    object graph; only the handles differ.
    """
    users = UserStore(engine)
    tokens = TokenStore(engine)
    cache = CacheStore(redis, default_ttl=settings.cache_ttl_seconds)
    sessions = SessionManager(
        redis,
        ttl_seconds=settings.session_ttl_seconds,
        cookie_name=settings.session_cookie_name,
        secure_cookies=settings.secure_cookies,
    )
    mailer = Mailer(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        smtp_user=settings.smtp_user,
        smtp_password=settings.smtp_password,
        smtp_use_tls=settings.smtp_use_tls,
        from_email=settings.email_from,
    )
    issuer = ResetTokenIssuer(tokens, settings.secret_key, ttl_seconds=settings.reset_token_ttl_seconds)

    app.state.settings = settings
    app.state.engine = engine
    app.state.redis = redis
    app.state.user_store = users
    app.state.token_store = tokens
    app.state.cache = cache
    app.state.session_manager = sessions
    app.state.auth_service = AuthService(
        users,
        cache,
        sessions,
        issuer,
        mailer,
        client_url=settings.client_url,
        bcrypt_rounds=settings.bcrypt_rounds,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired reset tokens every `interval` seconds.

    Expired tokens are already unusable; this only keeps the table small.
    A failed purge is logged and retried on the next tick, so the task
    only ends when it is cancelled.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await app.state.token_store.purge_expired()
        except Exception:
            logger.exception("Reset token purge failed; will retry")
            continue
        if removed:
            logger.info("Purged %d expired reset tokens", removed)


async def stop_purge_task(task: asyncio.Task) -> None:
    """Cancel the purge task and wait for it to unwind."""
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Database first -- the schema must exist before any store call.
      2. Redis second -- optional; None means cache off and sessions fail.
      3. Services wired around both handles.
      4. Purge task last -- references the token store.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("Gatekeeper API starting up")

    engine = make_engine(settings.database_url)
    await create_schema(engine)
    logger.info("Database initialized")

    redis = await connect_redis(
        settings.redis_url,
        enabled=settings.redis_enabled,
        pool_size=settings.redis_pool_size,
        socket_timeout=settings.redis_socket_timeout,
    )
    if redis is None:
        logger.warning("Running without Redis -- user cache disabled, logins will fail")

    wire_services(app, settings, engine, redis)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    # Shutdown
    await stop_purge_task(app.state.purge_task)
    if redis is not None:
        await redis.aclose()
    await engine.dispose()
    logger.info("Gatekeeper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatekeeper API",
    description="Session-based user authentication: registration, login/logout and password reset.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

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

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a workflow error with its own status and code.

    ServerError carries a generic message; the cause was logged where it
    was caught.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.error_code, message=exc.message, detail=exc.detail)
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field detail when the request body fails validation."""
    fields = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return await auth_error_handler(request, ValidationError(detail=fields))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body. The
    body is the same as a ServerError raised on purpose.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return await auth_error_handler(request, ServerError())


# ---------------------------------------------------------------------------
# Session view counter
#
# Smallest possible consumer of session-scoped state: proves the cookie and
# the Redis record round-trip for anonymous and logged-in visitors alike.
# ---------------------------------------------------------------------------


@app.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def views(request: Request, manager: SessionManager = Depends(get_session_manager)) -> PlainTextResponse:
    session = await manager.get(session_id_from(request))
    if session is None:
        session = await manager.create(data={"views": 1})
    else:
        session.data["views"] = int(session.data.get("views", 0)) + 1
        await manager.save(session)
    resp = PlainTextResponse(f"Number of views: {session.data['views']}")
    manager.set_cookie(resp, session)
    return resp


# ---------------------------------------------------------------------------
# Health endpoint
#
# No auth. Reports the database and cache separately; the cache being down is
# "degraded", not "unhealthy", because login still works without it.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and per-component status."""
    db_ok = await request.app.state.user_store.ping()
    cache_ok = await request.app.state.cache.ping()
    components = {
        "app": "ok",
        "database": "ok" if db_ok else "error",
        "cache": "ok" if cache_ok else "error",
    }
    if not db_ok:
        status = "unhealthy"
    elif not cache_ok:
        status = "degraded"
    else:
        status = "healthy"
    return HealthResponse(status=status, version=VERSION, components=components)
