"""Auth API — registration, login/logout, current user, password change.

Learn: Routes for the browser side of authentication:
- POST /auth/register → create an account (first account becomes admin)
- POST /auth/login → username/email + password → session cookie
- POST /auth/logout → drop the current session
- GET /auth/me → who am I (session or API token)
- PUT /auth/me/password → change password (browser session only)
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from starlette.requests import Request

from coditime.auth.dependencies import (
    get_account_service,
    get_client_ip,
    get_principal,
    get_recaptcha,
    get_session_store,
    reject_authenticated,
    require_session,
)
from coditime.auth.resolver import Principal, SessionPrincipal
from coditime.auth.sessions import SessionStore
from coditime.config import settings
from coditime.schemas.auth import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    PasswordChangeRequest,
    PasswordChangeResponse,
    RegisterRequest,
    SessionRead,
    UserRead,
)
from coditime.services.account_service import (
    AccountService,
    InvalidCredentialsError,
    UserAlreadyExistsError,
)
from coditime.services.recaptcha import RecaptchaError, RecaptchaVerifier

router = APIRouter(prefix="/auth")


async def check_recaptcha(
    recaptcha: RecaptchaVerifier, response: Optional[str], remote_ip: Optional[str]
) -> None:
    """400 if the reCAPTCHA answer is missing or rejected, 502 if Google is down."""
    if not response:
        raise HTTPException(status_code=400, detail="reCAPTCHA response required")
    try:
        passed = await recaptcha.verify(response, remote_ip)
    except RecaptchaError:
        raise HTTPException(status_code=502, detail="Could not verify reCAPTCHA")
    if not passed:
        raise HTTPException(status_code=400, detail="reCAPTCHA verification failed")


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    _: None = Depends(reject_authenticated),
    accounts: AccountService = Depends(get_account_service),
    recaptcha: RecaptchaVerifier = Depends(get_recaptcha),
):
    """Create a new account.

    The first account on a fresh install skips the registration toggle
    and reCAPTCHA so the admin can always get in.
    """
    if not await accounts.is_first_user():
        if not settings.public_registration:
            raise HTTPException(status_code=403, detail="Registration is closed")
        if recaptcha.require_on_registration:
            await check_recaptcha(recaptcha, body.recaptcha, get_client_ip(request))

    try:
        user = await accounts.register(
            username=body.username,
            email=body.email,
            password=body.password,
            name=body.name,
        )
    except UserAlreadyExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return user


# ─── Login / logout ──────────────────────────────────────


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    sessions: SessionStore = Depends(get_session_store),
    recaptcha: RecaptchaVerifier = Depends(get_recaptcha),
):
    """Login with username or email → session cookie."""
    if recaptcha.require_on_login:
        await check_recaptcha(recaptcha, body.recaptcha, get_client_ip(request))

    user = await accounts.verify_login(body.username_or_email, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    record = await sessions.create_session(user.id)
    response.set_cookie(
        settings.session_cookie_name,
        record.session_id,
        max_age=int(sessions.lifetime.total_seconds()),
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="strict",
    )
    return LoginResponse(
        user=UserRead.model_validate(user),
        session=SessionRead.model_validate(record),
    )


@router.post("/logout", status_code=204)
async def logout(
    principal: SessionPrincipal = Depends(require_session),
    sessions: SessionStore = Depends(get_session_store),
):
    """Invalidate the current session and clear the cookie."""
    await sessions.invalidate(principal.session.session_id)
    response = Response(status_code=204)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return response


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=MeResponse)
async def get_me(principal: Principal = Depends(get_principal)):
    """Get the current authenticated user and how they authenticated."""
    return MeResponse(
        method=principal.method,
        user=UserRead.model_validate(principal.as_user()),
    )


@router.put("/me/password", response_model=PasswordChangeResponse)
async def change_password(
    body: PasswordChangeRequest,
    principal: SessionPrincipal = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
    sessions: SessionStore = Depends(get_session_store),
):
    """Change password. Logs out every other session of this user."""
    user = principal.as_user()
    try:
        await accounts.change_password(user, body.old_password, body.new_password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=400, detail=str(e))

    removed_sessions = await sessions.invalidate_user(
        user.id, keep=principal.session.session_id
    )
    removed_api_keys = 0
    if body.revoke_api_keys:
        removed_api_keys = await accounts.revoke_all_api_keys(user)

    return PasswordChangeResponse(
        removed_sessions=removed_sessions,
        removed_api_keys=removed_api_keys,
    )
