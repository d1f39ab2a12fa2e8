"""SQLAlchemy ORM models — users and their API keys.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Only generic column types are used (Uuid, JSON, DateTime) so the same models
run on PostgreSQL in production and on SQLite in the test suite.

Timestamps are written from Python (utcnow) rather than server defaults so
that SQL comparisons against `expires_at` behave the same on both backends.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# Groups
GROUP_USER = "user"
GROUP_ADMIN = "admin"

# API key permissions
PERMISSION_WRITE_HEARTBEAT = "WriteHeartbeat"
PERMISSION_READ_HEARTBEAT = "ReadHeartbeat"
PERMISSION_READ_USAGE = "ReadUsage"
ALL_PERMISSIONS = [
    PERMISSION_WRITE_HEARTBEAT,
    PERMISSION_READ_HEARTBEAT,
    PERMISSION_READ_USAGE,
]


class User(Base):
    """A person with an account.

    Learn: The first account ever registered becomes an admin. Banned
    users keep their rows but can no longer authenticate by any method.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    group: Mapped[str] = mapped_column(String(16), nullable=False, default=GROUP_USER)
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_password_change: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    password_changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_logged_in: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Relationships
    api_keys: Mapped[list["ApiKey"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class ApiKey(Base):
    """Long-lived bearer token for editor plugins and the CLI.

    Learn: Only the SHA-256 of the token is stored. The raw value is shown
    once, at creation. Revoked keys keep their row (revoked_at set) so a
    client still sending one can be logged.
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        Index("idx_api_keys_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    prefix: Mapped[str] = mapped_column(String(12), nullable=False)  # e.g. "ct_a1b2c3d4"
    permissions: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=lambda: list(ALL_PERMISSIONS)
    )
    from_cli: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="api_keys")
