"""Account service — users, logins and API keys.

Learn: This is the data layer behind authentication. AuthenticationResolver
only needs two read methods from it (get_user, get_active_token); the rest
backs the account routes. All filtering of revoked, expired and banned
records happens in SQL, so a record that shouldn't authenticate is never
loaded in the first place.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coditime.auth.password import hash_password, verify_password
from coditime.auth.tokens import display_prefix, generate_api_token, hash_api_token
from coditime.db.models import (
    ALL_PERMISSIONS,
    GROUP_ADMIN,
    GROUP_USER,
    ApiKey,
    User,
)

logger = structlog.get_logger()


class UserAlreadyExistsError(Exception):
    """Raised when a username or email is already taken."""

    def __init__(self, field: str):
        super().__init__(f"{field.capitalize()} already registered")
        self.field = field


class InvalidCredentialsError(Exception):
    """Raised when a password check fails."""


class ApiKeyNotFoundError(Exception):
    """Raised when an API key doesn't exist or belongs to someone else."""


class AccountService:
    """User and API key operations for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups used by the resolver ─────────────────────

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        """Load a user that may authenticate (exists and isn't banned)."""
        user = await self.db.get(User, user_id)
        if user is None or user.banned:
            return None
        return user

    async def get_active_token(
        self, token_hash: str
    ) -> Optional[tuple[ApiKey, User]]:
        """Find a usable API key by digest, joined with its owner.

        Revoked keys, keys past expires_at and keys of banned users are
        filtered out by the query.
        """
        now = datetime.now(timezone.utc)
        q = (
            select(ApiKey, User)
            .join(User, ApiKey.user_id == User.id)
            .where(ApiKey.token_hash == token_hash)
            .where(ApiKey.revoked_at.is_(None))
            .where(or_(ApiKey.expires_at.is_(None), ApiKey.expires_at >= now))
            .where(User.banned.is_(False))
        )
        result = await self.db.execute(q)
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]

    # ─── Login ────────────────────────────────────────────

    async def verify_login(
        self, username_or_email: str, password: str
    ) -> Optional[User]:
        """Delegated password check. Returns the user or None."""
        ident = username_or_email.strip()
        q = select(User).where(
            or_(User.username == ident, User.email == ident.lower())
        )
        result = await self.db.execute(q)
        user = result.scalars().first()

        if user is None or user.banned:
            return None
        if not verify_password(password, user.password_hash):
            return None

        user.last_logged_in = datetime.now(timezone.utc)
        await self.db.commit()
        return user

    # ─── Registration ─────────────────────────────────────

    async def is_first_user(self) -> bool:
        result = await self.db.execute(select(func.count()).select_from(User))
        return result.scalar_one() == 0

    async def _taken_field(self, username: str, email: str) -> Optional[str]:
        """Which of email or username is already registered, if any."""
        existing = await self.db.execute(
            select(User.username, User.email).where(
                or_(User.username == username, User.email == email)
            )
        )
        for taken_username, taken_email in existing.all():
            if taken_email == email:
                return "email"
            if taken_username == username:
                return "username"
        return None

    async def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        name: str = "",
    ) -> User:
        """Create an account. The very first account becomes an admin."""
        email = email.strip().lower()
        taken = await self._taken_field(username, email)
        if taken:
            raise UserAlreadyExistsError(taken)

        group = GROUP_ADMIN if await self.is_first_user() else GROUP_USER
        user = User(
            username=username,
            email=email,
            name=name,
            password_hash=hash_password(password),
            group=group,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent registration took the name after the check above.
            await self.db.rollback()
            logger.info("account.register_conflict", username=username)
            raise UserAlreadyExistsError(
                await self._taken_field(username, email) or "username"
            )
        await self.db.refresh(user)
        logger.info("account.registered", user_id=str(user.id), group=group)
        return user

    async def change_password(
        self, user: User, old_password: str, new_password: str
    ) -> None:
        if not verify_password(old_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        user.password_changed_at = datetime.now(timezone.utc)
        user.require_password_change = False
        await self.db.commit()

    # ─── API keys ─────────────────────────────────────────

    async def create_api_key(
        self,
        user: User,
        *,
        name: str,
        permissions: Optional[list[str]] = None,
        expires_days: Optional[int] = None,
        from_cli: Optional[dict] = None,
    ) -> tuple[ApiKey, str]:
        """Mint a key. Returns (row, raw_token); the raw token is not stored."""
        raw_token = generate_api_token()
        expires_at = None
        if expires_days:
            expires_at = datetime.now(timezone.utc) + timedelta(days=expires_days)

        api_key = ApiKey(
            user_id=user.id,
            name=name,
            token_hash=hash_api_token(raw_token),
            prefix=display_prefix(raw_token),
            permissions=list(permissions or ALL_PERMISSIONS),
            from_cli=from_cli,
            expires_at=expires_at,
        )
        self.db.add(api_key)
        await self.db.commit()
        await self.db.refresh(api_key)
        logger.info(
            "account.api_key_created",
            user_id=str(user.id),
            key_id=str(api_key.id),
            from_cli=from_cli is not None,
        )
        return api_key, raw_token

    async def list_api_keys(
        self, user: User, *, include_revoked: bool = False
    ) -> list[ApiKey]:
        q = (
            select(ApiKey)
            .where(ApiKey.user_id == user.id)
            .order_by(ApiKey.created_at.desc())
        )
        if not include_revoked:
            q = q.where(ApiKey.revoked_at.is_(None))
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def revoke_api_key(self, user: User, key_id: uuid.UUID) -> ApiKey:
        """Mark a key revoked. Revoking an already revoked key is a no-op."""
        api_key = await self.db.get(ApiKey, key_id)
        if api_key is None or api_key.user_id != user.id:
            raise ApiKeyNotFoundError(f"API key {key_id} not found")
        if api_key.revoked_at is None:
            api_key.revoked_at = datetime.now(timezone.utc)
            await self.db.commit()
        return api_key

    async def revoke_all_api_keys(self, user: User) -> int:
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.user_id == user.id)
            .where(ApiKey.revoked_at.is_(None))
            .values(revoked_at=datetime.now(timezone.utc))
        )
        await self.db.commit()
        return result.rowcount or 0

    async def revoke_api_key_by_id(self, key_id: uuid.UUID) -> bool:
        """Revoke a key regardless of owner (system use only)."""
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .where(ApiKey.revoked_at.is_(None))
            .values(revoked_at=datetime.now(timezone.utc))
        )
        await self.db.commit()
        return bool(result.rowcount)
