"""Raw credential extraction — what the request claims, before validation.

Learn: Extraction is pure parsing. Nothing here touches the session store
or the database; that's the resolver's job. Precedence:

1. `Authorization: Bearer <token>`  → APITokenCredential
2. `Authorization: Session <id>`    → SessionCredential (if allowed in header)
3. session cookie                   → SessionCredential

An explicit Authorization header wins over the cookie so a CLI running
next to a logged-in browser profile authenticates as its token.
"""

from dataclasses import dataclass
from typing import Optional, Union

from starlette.requests import Request


@dataclass(frozen=True)
class SessionCredential:
    session_id: str


@dataclass(frozen=True)
class APITokenCredential:
    token: str


RawCredential = Union[SessionCredential, APITokenCredential]


def parse_authorization(
    header: Optional[str], *, allow_session: bool
) -> Optional[RawCredential]:
    """Parse an Authorization header value. Unknown schemes are ignored."""
    if not header:
        return None
    scheme, _, value = header.strip().partition(" ")
    value = value.strip()
    if not value:
        return None
    scheme = scheme.lower()
    if scheme == "bearer":
        return APITokenCredential(token=value)
    if scheme == "session" and allow_session:
        return SessionCredential(session_id=value)
    return None


def extract_credential(
    request: Request,
    *,
    cookie_name: str,
    allow_in_header: bool,
) -> Optional[RawCredential]:
    """Pull the raw credential out of a request, or None if there is none."""
    credential = parse_authorization(
        request.headers.get("Authorization"), allow_session=allow_in_header
    )
    if credential is not None:
        return credential

    session_id = request.cookies.get(cookie_name)
    if session_id:
        return SessionCredential(session_id=session_id)
    return None


def client_address(request: Request, *, trust_forwarded_for: bool) -> Optional[str]:
    """The caller's IP: first X-Forwarded-For hop when trusted, else the socket peer."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None
