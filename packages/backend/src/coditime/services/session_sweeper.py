"""Session sweeper — periodic cleanup of expired auth state.

Learn: Lookups already ignore expired sessions, so this worker is about
memory and disk, not correctness. Each pass:
1. removes expired sessions from the session store
2. evicts CLI pairing requests nobody approved or claimed in time

Runs as a background task in the FastAPI lifespan, same shape as any
other poll loop: run_loop() until stop() is called.
"""

import asyncio
from datetime import timedelta
from typing import Optional

import structlog

from coditime.auth.sessions import SessionStore
from coditime.services.cli_access import CLIAccess

logger = structlog.get_logger()


class SessionSweeper:
    """Background loop that sweeps the session store and CLI maps."""

    def __init__(
        self,
        sessions: SessionStore,
        cli_access: CLIAccess,
        *,
        interval: float = 300.0,
        pending_ttl: Optional[timedelta] = None,
        completed_ttl: Optional[timedelta] = None,
    ):
        self.sessions = sessions
        self.cli_access = cli_access
        self.interval = interval
        self.pending_ttl = pending_ttl
        self.completed_ttl = completed_ttl
        self._running = False

    async def sweep_once(self) -> dict:
        """One pass. Returns counts of what was removed."""
        expired_sessions = await self.sessions.sweep_expired()
        pending, completed = self.cli_access.sweep(self.pending_ttl, self.completed_ttl)
        if expired_sessions or pending or completed:
            logger.info(
                "sweeper.swept",
                sessions=expired_sessions,
                cli_pending=pending,
                cli_completed=completed,
            )
        return {
            "sessions": expired_sessions,
            "cli_pending": pending,
            "cli_completed": completed,
        }

    async def run_loop(self) -> None:
        self._running = True
        logger.info("sweeper.started", interval=self.interval)
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("sweeper.error", error=str(e))
        logger.info("sweeper.stopped")

    def stop(self) -> None:
        self._running = False
