"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Unlike a typical CRUD API, protection here is per-route, not per
router: the auth and CLI routers mix open endpoints (login, init-session)
with endpoints that need a principal, and each handler declares the
dependency it needs (get_principal or require_session).
"""

from fastapi import APIRouter

from coditime.api.api_keys import router as api_keys_router
from coditime.api.auth import router as auth_router
from coditime.api.cli import router as cli_router
from coditime.api.health import router as health_router
from coditime.api.state import router as state_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(state_router, tags=["state"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(api_keys_router, tags=["api-keys"])
api_router.include_router(cli_router, tags=["cli"])
