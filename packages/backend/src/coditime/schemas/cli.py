"""Pydantic schemas for the CLI pairing exchange."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from coditime.schemas.auth import LoginRequest


class CLIClientInfo(BaseModel):
    """What the CLI says about itself. Stored on the minted API key."""
    machine_hostname: str = Field("", max_length=255)
    cli_version: str = Field("", max_length=64)
    cli_platform: str = Field("", max_length=64)
    cli_commit: str = Field("", max_length=64)


class InitSessionRequest(CLIClientInfo):
    username: Optional[str] = Field(
        None, description="Expected account (username or email), if the CLI knows it"
    )


class InitSessionResponse(BaseModel):
    token: str = Field(..., description="Claim key to poll retrieve-result with")
    absolute_url: Optional[str] = Field(
        None, description="Approval page to open in a browser (needs home_url)"
    )


class PendingCLIRead(BaseModel):
    """Shown on the approval page so the human knows what they're approving."""
    client: CLIClientInfo
    username: Optional[str]
    created_at: datetime


class CompleteAccessRequest(LoginRequest):
    pass


class CLITokenRead(BaseModel):
    token: str
    token_id: str
    completed_at: datetime
