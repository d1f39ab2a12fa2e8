"""Public instance state for the frontend.

Learn: The login page needs a few facts before anyone is logged in:
whether this is a fresh install (first account becomes admin), whether
registration is open, and what reCAPTCHA widget to render. Nothing here
is secret.
"""

from fastapi import APIRouter, Depends
from starlette.requests import Request

from coditime import __version__
from coditime.auth.dependencies import get_account_service, get_recaptcha
from coditime.config import settings
from coditime.services.account_service import AccountService
from coditime.services.recaptcha import RecaptchaVerifier

router = APIRouter()


@router.get("/state")
async def get_state(
    request: Request,
    accounts: AccountService = Depends(get_account_service),
    recaptcha: RecaptchaVerifier = Depends(get_recaptcha),
):
    started_at = getattr(request.app.state, "started_at", None)
    return {
        "version": __version__,
        "home_url": settings.home_url,
        "public_registration": settings.public_registration,
        "is_first_user": await accounts.is_first_user(),
        "recaptcha": recaptcha.public_config(),
        "started_at": started_at.isoformat() if started_at else None,
    }
