"""Health check endpoint.

Learn: Verifies the server is running and its dependencies are reachable:
the database, the session store, and (optionally) Redis. A missing Redis
is reported but doesn't degrade the status, since nothing requires it.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from coditime import __version__
from coditime.auth.dependencies import get_cli_access, get_session_store
from coditime.auth.sessions import SessionStore, StorageError
from coditime.cache.client import get_redis
from coditime.db.engine import get_db
from coditime.services.cli_access import CLIAccess

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
    access: CLIAccess = Depends(get_cli_access),
):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    try:
        checks["sessions"] = {
            "backend": sessions.backend,
            "count": await sessions.count(),
        }
    except StorageError as e:
        checks["sessions"] = f"error: {e}"

    pending, completed = access.counts()
    checks["cli_requests"] = {"pending": pending, "completed": completed}

    redis = get_redis()
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    healthy = checks["database"] == "ok" and isinstance(checks["sessions"], dict)
    if checks["redis"] not in ("ok", "disabled"):
        healthy = False

    return {"status": "healthy" if healthy else "degraded", **checks}
