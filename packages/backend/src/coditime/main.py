"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan builds the long-lived auth state (session store, CLI
pairing maps, reCAPTCHA verifier), parks it on app.state, and starts the
session sweeper. Middleware, CORS, and routers are registered here.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from coditime import __version__
from coditime.api import api_router
from coditime.auth.sessions import StorageError, create_session_store
from coditime.config import settings
from coditime.services.cli_access import CLIAccess
from coditime.services.recaptcha import RecaptchaVerifier
from coditime.services.session_sweeper import SessionSweeper

logger = structlog.get_logger()


def _ttl(minutes: int) -> Optional[timedelta]:
    """CLI map TTL for the sweeper; None (keep forever) when not positive."""
    return timedelta(minutes=minutes) if minutes > 0 else None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at
    shutdown. A session store that can't open aborts startup: serving
    requests without one would log everyone out silently.
    """
    logger.info(
        "coditime.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        session_manager=settings.session_manager,
    )
    app.state.started_at = datetime.now(timezone.utc)

    from coditime.cache.client import close_redis, init_redis
    try:
        await init_redis()
        logger.info("coditime.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("coditime.redis_unavailable", error=str(e))

    sessions = create_session_store(settings)
    await sessions.open()
    app.state.session_store = sessions
    app.state.cli_access = CLIAccess(max_attempts=settings.cli_key_max_attempts)
    app.state.recaptcha = RecaptchaVerifier.from_settings(settings)

    sweeper = None
    sweep_task = None
    if settings.session_sweep_interval_seconds > 0:
        sweeper = SessionSweeper(
            sessions,
            app.state.cli_access,
            interval=settings.session_sweep_interval_seconds,
            pending_ttl=_ttl(settings.cli_pending_ttl_minutes),
            completed_ttl=_ttl(settings.cli_completed_ttl_minutes),
        )
        sweep_task = asyncio.create_task(sweeper.run_loop())
    app.state.sweeper = sweeper

    yield

    logger.info("coditime.shutdown")

    if sweeper is not None:
        sweeper.stop()
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass

    await sessions.close()
    await close_redis()

    from coditime.db.engine import engine
    await engine.dispose()


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("coditime.storage_error", error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal storage error"},
    )


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Coditime",
        description="Coding time tracker — authentication and CLI pairing",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from coditime.middleware.rate_limit import RateLimitMiddleware
    from coditime.middleware.request_id import RequestIdMiddleware
    from coditime.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StorageError, storage_error_handler)

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: coditime.main:app)
app = create_app()
