"""Pydantic schemas for accounts, sessions and API keys.

Learn: Request models validate input; *Read models serialise ORM rows
(from_attributes). Password hashes and token digests never appear in
any response model.
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Permission = Literal["WriteHeartbeat", "ReadHeartbeat", "ReadUsage"]


# ─── Register / login ───────────────────────────────────


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field("", max_length=100)
    password: str = Field(..., min_length=8)
    recaptcha: Optional[str] = Field(None, alias="g-recaptcha-response")


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username_or_email: str
    password: str
    recaptcha: Optional[str] = Field(None, alias="g-recaptcha-response")


class UserRead(BaseModel):
    id: uuid.UUID
    username: str
    email: str
    name: str
    group: str
    require_password_change: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class SessionRead(BaseModel):
    session_id: str
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    user: UserRead
    session: SessionRead


class MeResponse(BaseModel):
    method: Literal["session", "api_token"]
    user: UserRead


# ─── Password change ────────────────────────────────────


class PasswordChangeRequest(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=8)
    revoke_api_keys: bool = False


class PasswordChangeResponse(BaseModel):
    removed_sessions: int
    removed_api_keys: int


# ─── API keys ───────────────────────────────────────────


class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    permissions: Optional[list[Permission]] = None
    expires_days: Optional[int] = Field(None, ge=1, description="Expire in N days (None = never)")


class ApiKeyRead(BaseModel):
    """API key info (without the actual key)."""
    id: uuid.UUID
    name: str
    prefix: str
    permissions: list[str]
    from_cli: Optional[dict] = None
    revoked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApiKeyCreated(ApiKeyRead):
    """Response for API key creation — key is only shown ONCE."""
    key: str
