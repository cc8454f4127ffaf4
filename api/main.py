"""
api/main.py -- FastAPI application entry point for slidingauth.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests  -- method, path, status and latency for every request
  2. session_gate  -- validates + slides the session, applies route redirects

Lifespan builds every shared resource (user store, session store, session
manager, token codecs, mailer) once and hangs it on app.state, and starts a
purge task when sessions live in process memory; shutdown cancels the task
and closes them in reverse. Nothing is a module-level client, so tests swap the
lifespan and inject in-memory stores.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.gate import RouteGate
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import email_verification_codec, password_reset_codec
from cache.store import MemoryStore, open_store
from core.config import get_settings
from core.mailer import Mailer

VERSION = "0.1.0"

_PURGE_INTERVAL_SECONDS = 10 * 60

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("slidingauth.api")


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(store: MemoryStore, interval: float = _PURGE_INTERVAL_SECONDS) -> None:
    """Evict expired in-process sessions every interval seconds.

    MemoryStore only drops an expired key when that key is touched again, so
    abandoned sessions would otherwise stay in memory. Redis expires keys
    itself and gets no loop. Cancelled from lifespan shutdown.
    """
    while True:
        await asyncio.sleep(interval)
        removed = store.purge_expired()
        if removed:
            logger.debug("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared resources on startup and release them on shutdown.

    Startup order matters:
      1. Settings first -- everything else is configured from them.
      2. Stores second -- the session manager wraps the session store.
      3. Session manager and gate last -- the middleware reads both.
    """
    settings = get_settings()
    logger.info("slidingauth starting up (environment=%s)", settings.environment)
    app.state.settings = settings

    app.state.user_store = UserStore(settings.database_url)
    app.state.session_store = open_store(settings)
    app.state.session_manager = SessionManager.from_settings(app.state.session_store, settings)
    app.state.purge_task = None
    if isinstance(app.state.session_store, MemoryStore):
        app.state.purge_task = asyncio.create_task(_purge_loop(app.state.session_store))
    app.state.gate = RouteGate(
        settings.protected_routes,
        settings.auth_routes,
        login_path=settings.login_path,
        home_path=settings.home_path,
    )
    app.state.reset_tokens = password_reset_codec(settings)
    app.state.verify_tokens = email_verification_codec(settings)
    app.state.mailer = Mailer.from_settings(settings)
    if not app.state.mailer.is_configured:
        logger.warning("SMTP not configured -- emails are logged, not sent")
    logger.info(
        "Sessions: %ds default, %ds remember-me, secure cookies=%s",
        settings.session_duration_seconds,
        settings.remember_me_duration_seconds,
        settings.secure_cookies,
    )

    yield

    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("slidingauth shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="slidingauth",
    description="Email/password accounts with sliding-window server-side sessions.",
    version=VERSION,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Session gate middleware
#
# The ONE place ordinary navigation triggers the sliding refresh. The store
# calls are blocking, so validate_session runs on the thread pool. The result
# is left on request.state.session for auth.dependencies.
# ---------------------------------------------------------------------------


def _sets_cookie(response, cookie_name: str) -> bool:
    prefix = f"{cookie_name}="
    return any(h.startswith(prefix) for h in response.headers.getlist("set-cookie"))


@app.middleware("http")
async def session_gate(request: Request, call_next):
    """Validate the session, apply the route gate, then renew the cookie.

    A store outage yields session None, so protected pages redirect to login
    until the store is back.

    Whenever a live session was validated, the cookie is re-issued with the
    same duration just applied to the store TTL, on redirects as well as on
    pass-through. Routes that wrote the session cookie themselves (login,
    logout) are left alone.
    """
    manager: SessionManager = request.app.state.session_manager
    gate: RouteGate = request.app.state.gate

    session = await run_in_threadpool(manager.validate_session, request)
    request.state.session = session

    decision = gate.evaluate(request.url.path, authenticated=session is not None)
    if not decision.allowed:
        logger.debug("Gate redirect %s -> %s", request.url.path, decision.redirect_to)
        response = RedirectResponse(decision.redirect_to, status_code=302)
        # The store TTL was just slid; the cookie must follow it.
        if session is not None:
            manager.set_session_cookie(response, session.session_id, session.remember_me)
        return response

    response = await call_next(request)
    if session is not None and not _sets_cookie(response, manager.cookie_name):
        manager.set_session_cookie(response, session.session_id, session.remember_me)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Registered last, so it wraps session_gate and also times the redirects.
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
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _field_messages(exc: RequestValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        msg = err.get("msg", "Invalid value")
        # pydantic prefixes messages from AfterValidator functions.
        messages.append(f"{field}: {msg.removeprefix('Value error, ')}")
    return messages


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one "field: message" entry per failed constraint. Not logged as an error."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                fields=_field_messages(exc),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code": ..., "message": ...}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


def _probe(name: str, check) -> str:
    try:
        return "ok" if check() else "error"
    except Exception:
        logger.exception("Health check failed: %s", name)
        return "error"


@app.get("/api/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus the state of the session store and the user database."""
    components = {
        "app": "ok",
        "session_store": _probe("session_store", request.app.state.session_store.ping),
        "database": _probe("database", request.app.state.user_store.ping),
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
