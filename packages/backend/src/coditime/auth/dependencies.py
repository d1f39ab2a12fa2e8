"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers. Shared, long-lived
objects (session store, CLI pairing maps, recaptcha verifier) are built
once in the app lifespan and parked on app.state; the getters below hand
them to handlers so nothing reaches for a module-level global.

Two principal dependencies:
1. get_principal    → any authenticated caller (401 otherwise)
2. require_session  → browser sessions only (403 for API tokens)
"""

from typing import Optional

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from coditime.auth.credentials import RawCredential, client_address, extract_credential
from coditime.auth.resolver import (
    AuthenticationError,
    AuthenticationResolver,
    Principal,
    SessionPrincipal,
)
from coditime.auth.sessions import SessionStore
from coditime.config import settings
from coditime.db.engine import get_db
from coditime.services.account_service import AccountService
from coditime.services.cli_access import CLIAccess
from coditime.services.recaptcha import RecaptchaVerifier


# ─── Shared state ────────────────────────────────────────


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_cli_access(request: Request) -> CLIAccess:
    return request.app.state.cli_access


def get_recaptcha(request: Request) -> RecaptchaVerifier:
    return request.app.state.recaptcha


def get_account_service(db: AsyncSession = Depends(get_db)) -> AccountService:
    return AccountService(db)


def get_resolver(
    sessions: SessionStore = Depends(get_session_store),
    accounts: AccountService = Depends(get_account_service),
) -> AuthenticationResolver:
    return AuthenticationResolver(sessions=sessions, accounts=accounts)


def get_client_ip(request: Request) -> Optional[str]:
    """Best-effort client address, or None if the server can't tell."""
    return client_address(request, trust_forwarded_for=settings.trust_forwarded_for)


# ─── Credentials & principals ────────────────────────────


def get_raw_credential(request: Request) -> Optional[RawCredential]:
    return extract_credential(
        request,
        cookie_name=settings.session_cookie_name,
        allow_in_header=settings.session_allow_in_header,
    )


def _to_http(error: AuthenticationError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if error.status_code == 401 else None
    return HTTPException(status_code=error.status_code, detail=error.detail, headers=headers)


async def get_principal(
    credential: Optional[RawCredential] = Depends(get_raw_credential),
    resolver: AuthenticationResolver = Depends(get_resolver),
) -> Principal:
    """Resolve the caller (required — 401 if missing or invalid)."""
    try:
        return await resolver.resolve(credential)
    except AuthenticationError as e:
        raise _to_http(e)


async def require_session(
    credential: Optional[RawCredential] = Depends(get_raw_credential),
    resolver: AuthenticationResolver = Depends(get_resolver),
) -> SessionPrincipal:
    """Resolve the caller, refusing API tokens (403 MustBeSession)."""
    try:
        return await resolver.resolve_session_only(credential)
    except AuthenticationError as e:
        raise _to_http(e)


def reject_authenticated(
    credential: Optional[RawCredential] = Depends(get_raw_credential),
) -> None:
    """For endpoints that make no sense while logged in (e.g. register)."""
    if credential is not None:
        raise HTTPException(status_code=403, detail="Already authenticated")
