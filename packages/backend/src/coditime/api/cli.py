"""CLI pairing API — a detached CLI gets an API token via browser approval.

Learn: Routes for the three-step handshake (see services/cli_access.py):
- POST /cli/init-session → CLI registers, gets a claim key (+ approval URL)
- GET /cli/pending/:key → approval page shows what is asking for access
- POST /cli/complete-access/:key → human logs in, token is minted
- GET /cli/retrieve-result/:key → CLI polls: 200 token | 102 pending | 401

None of these take a principal. The CLI has no credentials yet, and the
human proves who they are with their login in the approval body.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from starlette.requests import Request

from coditime.api.auth import check_recaptcha
from coditime.auth.dependencies import (
    get_account_service,
    get_cli_access,
    get_client_ip,
    get_recaptcha,
)
from coditime.config import settings
from coditime.schemas.cli import (
    CLIClientInfo,
    CLITokenRead,
    CompleteAccessRequest,
    InitSessionRequest,
    InitSessionResponse,
    PendingCLIRead,
)
from coditime.services.account_service import AccountService, InvalidCredentialsError
from coditime.services.cli_access import (
    CLIAccess,
    CLIPairingService,
    CLIRequestNotFoundError,
    IPMismatchError,
    approval_url,
)
from coditime.services.recaptcha import RecaptchaVerifier

router = APIRouter(prefix="/cli")


def _require_ip(request: Request) -> str:
    ip_address = get_client_ip(request)
    if not ip_address:
        raise HTTPException(status_code=400, detail="Could not determine client IP address")
    return ip_address


# ─── CLI → platform ─────────────────────────────────────


@router.post("/init-session", response_model=InitSessionResponse)
async def init_session(
    body: InitSessionRequest,
    request: Request,
    access: CLIAccess = Depends(get_cli_access),
):
    """Start a pairing handshake. The claim key is polled with retrieve-result."""
    ip_address = _require_ip(request)
    client = CLIClientInfo.model_validate(body.model_dump(exclude={"username"}))
    key = access.init_session(client.model_dump(), body.username, ip_address)
    return InitSessionResponse(
        token=key,
        absolute_url=approval_url(settings.home_url, key),
    )


@router.get(
    "/retrieve-result/{claim_key}",
    response_model=CLITokenRead,
    responses={
        102: {"description": "Not approved yet, poll again"},
        401: {"description": "IP address does not match the pairing request"},
    },
)
async def retrieve_result(
    claim_key: str,
    request: Request,
    access: CLIAccess = Depends(get_cli_access),
    accounts: AccountService = Depends(get_account_service),
):
    """Collect the token once approved. Works exactly once per claim key."""
    ip_address = _require_ip(request)
    try:
        completed = access.retrieve_result(claim_key, ip_address)
    except IPMismatchError as e:
        # Nobody will ever collect this token now.
        await accounts.revoke_api_key_by_id(e.completed.token_id)
        raise HTTPException(status_code=401, detail="Unauthorized")

    if completed is None:
        return Response(status_code=status.HTTP_102_PROCESSING)

    return CLITokenRead(
        token=completed.api_token,
        token_id=str(completed.token_id),
        completed_at=completed.completed_at,
    )


# ─── Human → platform ───────────────────────────────────


@router.get("/pending/{claim_key}", response_model=PendingCLIRead)
async def get_pending(
    claim_key: str,
    access: CLIAccess = Depends(get_cli_access),
):
    """Describe a pending request for the approval page."""
    pending = access.get_pending(claim_key)
    if pending is None:
        raise HTTPException(status_code=404, detail="CLI request not found")
    return PendingCLIRead(
        client=CLIClientInfo.model_validate(pending.client_metadata),
        username=pending.username,
        created_at=pending.created_at,
    )


@router.post("/complete-access/{claim_key}", status_code=204)
async def complete_access(
    claim_key: str,
    body: CompleteAccessRequest,
    request: Request,
    access: CLIAccess = Depends(get_cli_access),
    accounts: AccountService = Depends(get_account_service),
    recaptcha: RecaptchaVerifier = Depends(get_recaptcha),
):
    """Approve a pending CLI request with the human's login."""
    if recaptcha.require_on_login:
        await check_recaptcha(recaptcha, body.recaptcha, get_client_ip(request))

    svc = CLIPairingService(access, accounts)
    try:
        await svc.approve(claim_key, body.username_or_email, body.password)
    except CLIRequestNotFoundError:
        raise HTTPException(status_code=404, detail="CLI request not found")
    except InvalidCredentialsError:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return Response(status_code=204)
