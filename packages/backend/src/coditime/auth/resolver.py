"""Authentication resolver — RawCredential → Principal.

Learn: This is where the two credential mechanisms meet. A session id is
looked up in the session store; an API token is hashed and looked up
through the account collaborator. Either way the result is a principal
that carries a fully loaded user, or an AuthenticationError.

Every invalid credential produces the same error for its kind whatever
the underlying reason (expired, revoked, unknown, owner deleted). Callers
can't use the response to probe which tokens or sessions once existed.

The resolver only reads. It never touches the session store or the
api_keys table beyond lookups.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import structlog

from coditime.auth.credentials import (
    APITokenCredential,
    RawCredential,
    SessionCredential,
)
from coditime.auth.sessions import SessionRecord, SessionStore
from coditime.auth.tokens import hash_api_token
from coditime.db.models import ApiKey, User

logger = structlog.get_logger()


# ─── Errors ──────────────────────────────────────────────


class AuthenticationError(Exception):
    """Base for resolver failures. Each subclass maps to one HTTP status."""

    status_code = 401
    detail = "Unauthorized"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class NoAuthenticationProvided(AuthenticationError):
    detail = "Authentication required"


class InvalidAPIToken(AuthenticationError):
    detail = "Invalid API token"


class InvalidSession(AuthenticationError):
    detail = "Invalid session"


class MustBeSession(AuthenticationError):
    status_code = 403
    detail = "This endpoint requires a browser session"


# ─── Principals ──────────────────────────────────────────


@dataclass(frozen=True)
class SessionPrincipal:
    """Logged in through the browser (cookie or Session header)."""

    user: User
    session: SessionRecord

    method = "session"

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id

    def as_user(self) -> User:
        return self.user


@dataclass(frozen=True)
class TokenPrincipal:
    """Authenticated with an API token."""

    user: User
    token: ApiKey

    method = "api_token"

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id

    def as_user(self) -> User:
        return self.user


Principal = Union[SessionPrincipal, TokenPrincipal]


# ─── Collaborators ───────────────────────────────────────


class AccountLookup(Protocol):
    """Read-only data-layer capabilities the resolver needs.

    AccountService implements this against the database.
    """

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        ...

    async def get_active_token(self, token_hash: str) -> Optional[tuple[ApiKey, User]]:
        ...


# ─── Resolver ────────────────────────────────────────────


class AuthenticationResolver:
    """Turns a raw credential into a principal, or raises."""

    def __init__(self, sessions: SessionStore, accounts: AccountLookup):
        self.sessions = sessions
        self.accounts = accounts

    async def resolve(self, credential: Optional[RawCredential]) -> Principal:
        if credential is None:
            raise NoAuthenticationProvided()
        if isinstance(credential, SessionCredential):
            return await self.resolve_session(credential)
        if isinstance(credential, APITokenCredential):
            return await self._resolve_token(credential)
        raise TypeError(f"Unknown credential type: {type(credential).__name__}")

    async def resolve_session(self, credential: SessionCredential) -> SessionPrincipal:
        record = await self.sessions.get_session(credential.session_id)
        if record is None:
            raise InvalidSession()

        user = await self.accounts.get_user(record.user_id)
        if user is None:
            # A session must never outlive its user.
            logger.warning(
                "auth.session_user_missing",
                session_user_id=str(record.user_id),
            )
            raise InvalidSession()
        return SessionPrincipal(user=user, session=record)

    async def _resolve_token(self, credential: APITokenCredential) -> TokenPrincipal:
        found = await self.accounts.get_active_token(hash_api_token(credential.token))
        if found is None:
            raise InvalidAPIToken()
        token, user = found
        return TokenPrincipal(user=user, token=token)

    async def resolve_session_only(
        self, credential: Optional[RawCredential]
    ) -> SessionPrincipal:
        """Stricter variant for endpoints API tokens must not reach."""
        if credential is None:
            raise NoAuthenticationProvided()
        if not isinstance(credential, SessionCredential):
            raise MustBeSession()
        return await self.resolve_session(credential)
