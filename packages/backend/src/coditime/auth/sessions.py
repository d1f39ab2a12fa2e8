"""Session store — opaque session id → SessionRecord.

Learn: Sessions are server-side state. The cookie only carries a random
identifier; everything else (owner, expiry) lives in the store. Two
backends implement the same SessionStore contract:

- MemorySessionStore: a dict behind a lock. Fast, lost on restart.
- FileSessionStore: a SQLite file accessed through SQLAlchemy async
  (aiosqlite). Survives restarts.

The backend is picked once at startup from settings (create_session_store)
and handed to every request through app.state. Callers only ever see the
SessionStore interface.

Expiry is enforced lazily on lookup (an expired record is removed and
reads as missing) and eagerly by sweep_expired(), which the background
SessionSweeper calls on an interval.
"""

import asyncio
import secrets
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import structlog
from sqlalchemy import (
    Column,
    Float,
    MetaData,
    String,
    Table,
    delete,
    func,
    insert,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from coditime.config import Settings

logger = structlog.get_logger()

# 32 random bytes → 43 url-safe characters
SESSION_ID_BYTES = 32
# Attempts at drawing an unused id before giving up. With 256-bit ids a
# second attempt is already astronomically unlikely.
MAX_ID_ATTEMPTS = 8


class StorageError(Exception):
    """Raised when a session store can't read or write its backing storage."""


@dataclass(frozen=True)
class SessionRecord:
    """One logged-in browser session. Owned by the store that created it."""

    session_id: str
    user_id: uuid.UUID
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


def new_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


class SessionStore(ABC):
    """Contract shared by every session backend."""

    backend: str = ""

    def __init__(self, lifetime: timedelta):
        self.lifetime = lifetime

    async def open(self) -> None:
        """Prepare backing storage. Raises StorageError on failure."""

    async def close(self) -> None:
        """Release backing storage."""

    @abstractmethod
    async def create_session(self, user_id: uuid.UUID) -> SessionRecord:
        """Insert a session under a fresh, unused identifier."""

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Return the live record for an id, or None (missing or expired)."""

    @abstractmethod
    async def invalidate(self, session_id: str) -> None:
        """Remove a session. Removing an unknown id is a no-op."""

    @abstractmethod
    async def invalidate_user(
        self, user_id: uuid.UUID, keep: Optional[str] = None
    ) -> int:
        """Remove every session of a user except `keep`. Returns the count."""

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Remove all expired sessions. Returns the count."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored sessions, expired-but-unswept included."""

    def _new_record(self, user_id: uuid.UUID, session_id: str) -> SessionRecord:
        now = datetime.now(timezone.utc)
        return SessionRecord(
            session_id=session_id,
            user_id=user_id,
            created_at=now,
            expires_at=now + self.lifetime,
        )


# ─── In-memory backend ───────────────────────────────────


class MemorySessionStore(SessionStore):
    """Sessions in a process-local dict.

    Learn: Every method does its work synchronously under a threading.Lock
    and never awaits while holding it, so the lock is safe both for
    coroutines on the event loop and for sync handlers FastAPI runs in its
    threadpool.

    `start_size` is kept as a capacity hint for parity with the config
    surface; CPython dicts have no reservation API and grow on demand.
    """

    backend = "memory"

    def __init__(self, lifetime: timedelta, start_size: int = 100):
        super().__init__(lifetime)
        self.start_size = start_size
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    async def open(self) -> None:
        logger.info(
            "session_store.opened", backend=self.backend, start_size=self.start_size
        )

    async def create_session(self, user_id: uuid.UUID) -> SessionRecord:
        with self._lock:
            for _ in range(MAX_ID_ATTEMPTS):
                session_id = new_session_id()
                if session_id in self._sessions:
                    logger.warning("session_store.id_collision", backend=self.backend)
                    continue
                record = self._new_record(user_id, session_id)
                self._sessions[session_id] = record
                return record
        raise StorageError("Could not allocate an unused session id")

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            if record.is_expired():
                del self._sessions[session_id]
                return None
            return record

    async def invalidate(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    async def invalidate_user(
        self, user_id: uuid.UUID, keep: Optional[str] = None
    ) -> int:
        with self._lock:
            doomed = [
                sid
                for sid, record in self._sessions.items()
                if record.user_id == user_id and sid != keep
            ]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    async def sweep_expired(self) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            doomed = [
                sid for sid, record in self._sessions.items() if record.is_expired(now)
            ]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    async def count(self) -> int:
        with self._lock:
            return len(self._sessions)


# ─── File-backed backend ─────────────────────────────────

_metadata = MetaData()

sessions_table = Table(
    "sessions",
    _metadata,
    Column("session_id", String(64), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    # Epoch seconds (UTC). Floats compare the same way in SQL and Python.
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
)


def _to_row(record: SessionRecord) -> dict:
    return {
        "session_id": record.session_id,
        "user_id": str(record.user_id),
        "created_at": record.created_at.timestamp(),
        "expires_at": record.expires_at.timestamp(),
    }


def _from_row(row) -> SessionRecord:
    return SessionRecord(
        session_id=row.session_id,
        user_id=uuid.UUID(row.user_id),
        created_at=datetime.fromtimestamp(row.created_at, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
    )


class FileSessionStore(SessionStore):
    """Sessions persisted in a SQLite file.

    Learn: Reads run concurrently. Writes go through an asyncio.Lock that
    is held only for the single statement being written, never across
    unrelated awaits, so SQLite never sees two writers at once and readers
    wait no longer than the write itself.

    Any SQLAlchemy or OS failure is re-raised as StorageError; a broken
    disk must not read as "no session".
    """

    backend = "file"

    def __init__(self, path: str, lifetime: timedelta):
        super().__init__(lifetime)
        self.path = Path(path)
        self._engine: Optional[AsyncEngine] = None
        self._write_lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StorageError("Session store is not open. Call open() first.")
        return self._engine

    async def open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_async_engine(f"sqlite+aiosqlite:///{self.path}")
            async with self._engine.begin() as conn:
                await conn.run_sync(_metadata.create_all)
        except (OSError, SQLAlchemyError) as e:
            if self._engine is not None:
                await self._engine.dispose()
                self._engine = None
            raise StorageError(f"Could not open session file {self.path}: {e}") from e
        logger.info("session_store.opened", backend=self.backend, path=str(self.path))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    async def _write(self, statement):
        try:
            async with self._write_lock:
                async with self.engine.begin() as conn:
                    return await conn.execute(statement)
        except IntegrityError:
            raise
        except (OSError, SQLAlchemyError) as e:
            raise StorageError(f"Session store write failed: {e}") from e

    async def create_session(self, user_id: uuid.UUID) -> SessionRecord:
        for _ in range(MAX_ID_ATTEMPTS):
            record = self._new_record(user_id, new_session_id())
            try:
                await self._write(insert(sessions_table).values(**_to_row(record)))
            except IntegrityError:
                logger.warning("session_store.id_collision", backend=self.backend)
                continue
            return record
        raise StorageError("Could not allocate an unused session id")

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(sessions_table).where(
                        sessions_table.c.session_id == session_id
                    )
                )
                row = result.first()
        except (OSError, SQLAlchemyError) as e:
            raise StorageError(f"Session store read failed: {e}") from e

        if row is None:
            return None
        record = _from_row(row)
        if record.is_expired():
            await self.invalidate(session_id)
            return None
        return record

    async def invalidate(self, session_id: str) -> None:
        await self._write(
            delete(sessions_table).where(sessions_table.c.session_id == session_id)
        )

    async def invalidate_user(
        self, user_id: uuid.UUID, keep: Optional[str] = None
    ) -> int:
        stmt = delete(sessions_table).where(sessions_table.c.user_id == str(user_id))
        if keep is not None:
            stmt = stmt.where(sessions_table.c.session_id != keep)
        result = await self._write(stmt)
        return result.rowcount or 0

    async def sweep_expired(self) -> int:
        now = datetime.now(timezone.utc).timestamp()
        result = await self._write(
            delete(sessions_table).where(sessions_table.c.expires_at <= now)
        )
        return result.rowcount or 0

    async def count(self) -> int:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(func.count()).select_from(sessions_table)
                )
                return result.scalar_one()
        except (OSError, SQLAlchemyError) as e:
            raise StorageError(f"Session store read failed: {e}") from e


def create_session_store(config: Settings) -> SessionStore:
    """Build the backend named by `config.session_manager` (not yet opened)."""
    lifetime = timedelta(hours=config.session_lifetime_hours)
    if config.session_manager == "file":
        return FileSessionStore(config.session_file_path, lifetime)
    return MemorySessionStore(lifetime, start_size=config.session_memory_start_size)
