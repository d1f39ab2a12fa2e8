"""API key management.

Learn: Keys are created and revoked from a browser session only; an API
token can list keys but can't mint or revoke them, so a leaked token
can't dig itself in deeper.
- POST /api-keys → create (returns the key once!)
- GET /api-keys → list your keys
- DELETE /api-keys/:id → revoke
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query

from coditime.auth.dependencies import get_account_service, get_principal, require_session
from coditime.auth.resolver import Principal, SessionPrincipal
from coditime.schemas.auth import ApiKeyCreate, ApiKeyCreated, ApiKeyRead
from coditime.services.account_service import AccountService, ApiKeyNotFoundError

router = APIRouter(prefix="/api-keys")


@router.post("", response_model=ApiKeyCreated, status_code=201)
async def create_api_key(
    body: ApiKeyCreate,
    principal: SessionPrincipal = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
):
    """Create a new API key. The full key is only returned ONCE."""
    api_key, raw_token = await accounts.create_api_key(
        principal.as_user(),
        name=body.name,
        permissions=body.permissions,
        expires_days=body.expires_days,
    )
    return ApiKeyCreated(
        **ApiKeyRead.model_validate(api_key).model_dump(),
        key=raw_token,
    )


@router.get("", response_model=list[ApiKeyRead])
async def list_api_keys(
    include_revoked: bool = Query(False),
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
):
    """List your API keys (without the actual key values)."""
    return await accounts.list_api_keys(
        principal.as_user(), include_revoked=include_revoked
    )


@router.delete("/{key_id}", response_model=ApiKeyRead)
async def revoke_api_key(
    key_id: uuid.UUID,
    principal: SessionPrincipal = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
):
    """Revoke an API key. It stops authenticating immediately."""
    try:
        return await accounts.revoke_api_key(principal.as_user(), key_id)
    except ApiKeyNotFoundError:
        raise HTTPException(status_code=404, detail="API key not found")
