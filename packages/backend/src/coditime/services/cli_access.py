"""CLI pairing — let a detached CLI obtain an API token via browser approval.

Learn: The exchange has three steps and one claim key:

  CLI      POST init-session          → claim key (+ approval URL)
  Human    POST complete-access/{key} → logs in, token is minted
  CLI      GET  retrieve-result/{key} → polls until the token appears

  (none) ──init──▶ Pending ──approve──▶ Completed ──retrieve──▶ (gone)

State lives in two dicts behind one lock: pending requests and completed
(unclaimed) results. Every mutation is a single step done under the lock,
and nothing awaits while the lock is held. Minting the token (a database
write) happens between taking the pending request and storing the result.

retrieve_result() pops the completed record before anything else, so
exactly one poller can ever see a token. If that poller's IP differs
from the one that started the handshake the record is dropped, not put
back: a replayed key fails closed.

Nothing here expires on its own. SessionSweeper calls sweep() to evict
requests that were abandoned.
"""

import secrets
import string
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from coditime.auth.sessions import StorageError
from coditime.db.models import User
from coditime.services.account_service import AccountService, InvalidCredentialsError

logger = structlog.get_logger()

CLAIM_KEY_LENGTH = 16
CLAIM_KEY_ALPHABET = string.ascii_letters + string.digits


def generate_claim_key(length: int = CLAIM_KEY_LENGTH) -> str:
    return "".join(secrets.choice(CLAIM_KEY_ALPHABET) for _ in range(length))


def approval_url(home_url: Optional[str], claim_key: str) -> Optional[str]:
    """Browser link a human opens to approve the CLI, if a home URL is set."""
    if not home_url:
        return None
    return f"{home_url.rstrip('/')}/login-cli/{claim_key}"


# ─── Records ─────────────────────────────────────────────


@dataclass(frozen=True)
class PendingCLIRequest:
    claim_key: str
    client_metadata: dict
    username: Optional[str]
    ip_address: str
    created_at: datetime


@dataclass(frozen=True)
class CompletedCLIRequest:
    claim_key: str
    client_metadata: dict
    username: Optional[str]
    api_token: str
    token_id: uuid.UUID
    ip_address: str
    created_at: datetime
    completed_at: datetime


# ─── Errors ──────────────────────────────────────────────


class ClaimKeyCollision(Exception):
    """A freshly drawn claim key is already in use. Retried internally."""


class IPMismatchError(Exception):
    """The CLI retrieving a result isn't the one that started the handshake."""

    def __init__(self, completed: "CompletedCLIRequest"):
        super().__init__("IP address does not match the pairing request")
        self.completed = completed


class CLIRequestNotFoundError(Exception):
    """No pending request for this claim key."""


# ─── Shared state ────────────────────────────────────────


class CLIAccess:
    """Process-wide pending/completed maps. Built once in the app lifespan."""

    def __init__(
        self,
        *,
        key_length: int = CLAIM_KEY_LENGTH,
        max_attempts: int = 16,
        key_factory: Callable[[int], str] = generate_claim_key,
    ):
        if key_length < CLAIM_KEY_LENGTH:
            raise ValueError(f"Claim keys must be at least {CLAIM_KEY_LENGTH} characters")
        self.key_length = key_length
        self.max_attempts = max_attempts
        self._key_factory = key_factory
        self._pending: dict[str, PendingCLIRequest] = {}
        self._completed: dict[str, CompletedCLIRequest] = {}
        self._lock = threading.Lock()

    def _check_free(self, key: str) -> None:
        if key in self._pending or key in self._completed:
            raise ClaimKeyCollision(key)

    def _draw_key(self) -> str:
        """Draw an unused key. Caller must hold the lock."""
        for attempt in range(1, self.max_attempts + 1):
            key = self._key_factory(self.key_length)
            try:
                self._check_free(key)
            except ClaimKeyCollision:
                logger.warning("cli.claim_key_collision", attempt=attempt)
                continue
            return key
        raise StorageError(
            f"Could not allocate a free CLI claim key after {self.max_attempts} attempts"
        )

    def init_session(
        self,
        client_metadata: dict,
        username: Optional[str],
        ip_address: str,
    ) -> str:
        """Register a pending request and return its claim key."""
        with self._lock:
            key = self._draw_key()
            self._pending[key] = PendingCLIRequest(
                claim_key=key,
                client_metadata=dict(client_metadata),
                username=username,
                ip_address=ip_address,
                created_at=datetime.now(timezone.utc),
            )
        logger.info("cli.pending_created", ip=ip_address)
        return key

    def get_pending(self, claim_key: str) -> Optional[PendingCLIRequest]:
        with self._lock:
            return self._pending.get(claim_key)

    def take_pending(self, claim_key: str) -> Optional[PendingCLIRequest]:
        with self._lock:
            return self._pending.pop(claim_key, None)

    def restore_pending(self, request: PendingCLIRequest) -> None:
        with self._lock:
            self._pending.setdefault(request.claim_key, request)

    def complete(
        self, request: PendingCLIRequest, api_token: str, token_id: uuid.UUID
    ) -> CompletedCLIRequest:
        """Store the approved result under the request's claim key."""
        completed = CompletedCLIRequest(
            claim_key=request.claim_key,
            client_metadata=request.client_metadata,
            username=request.username,
            api_token=api_token,
            token_id=token_id,
            ip_address=request.ip_address,
            created_at=request.created_at,
            completed_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._pending.pop(request.claim_key, None)
            self._completed[request.claim_key] = completed
        return completed

    def retrieve_result(
        self, claim_key: str, requester_ip: str
    ) -> Optional[CompletedCLIRequest]:
        """Single-consumption read of a completed request.

        Returns None while the request is still pending (or unknown).
        Raises IPMismatchError, after discarding the record, if the caller's
        IP differs from the one that started the handshake.
        """
        with self._lock:
            completed = self._completed.pop(claim_key, None)
        if completed is None:
            return None
        if completed.ip_address != requester_ip:
            logger.warning(
                "cli.ip_mismatch",
                expected=completed.ip_address,
                actual=requester_ip,
                token_id=str(completed.token_id),
            )
            raise IPMismatchError(completed)
        return completed

    def sweep(
        self,
        pending_ttl: Optional[timedelta],
        completed_ttl: Optional[timedelta],
    ) -> tuple[int, int]:
        """Evict records older than their TTL. A None TTL keeps that map."""
        now = datetime.now(timezone.utc)
        removed_pending = removed_completed = 0
        with self._lock:
            if pending_ttl is not None:
                stale = [
                    k for k, r in self._pending.items() if now - r.created_at >= pending_ttl
                ]
                for k in stale:
                    del self._pending[k]
                removed_pending = len(stale)
            if completed_ttl is not None:
                stale = [
                    k
                    for k, r in self._completed.items()
                    if now - r.completed_at >= completed_ttl
                ]
                for k in stale:
                    del self._completed[k]
                removed_completed = len(stale)
        return removed_pending, removed_completed

    def counts(self) -> tuple[int, int]:
        with self._lock:
            return len(self._pending), len(self._completed)


# ─── Approval ────────────────────────────────────────────


class CLIPairingService:
    """Human side of the handshake: log in and mint the CLI's token."""

    def __init__(self, access: CLIAccess, accounts: AccountService):
        self.access = access
        self.accounts = accounts

    async def approve(
        self, claim_key: str, username_or_email: str, password: str
    ) -> CompletedCLIRequest:
        """Validate the login, mint a token, and move the request to completed.

        The pending request stays in place if the login fails, so the human
        can retry. It is taken out before the token is minted so two
        concurrent approvals can't both mint one, and put back if minting
        fails.
        """
        pending = self.access.get_pending(claim_key)
        if pending is None:
            raise CLIRequestNotFoundError(claim_key)

        user = await self.accounts.verify_login(username_or_email, password)
        if user is None:
            raise InvalidCredentialsError("Invalid credentials")
        if not _matches_hint(user, pending.username):
            logger.warning(
                "cli.username_hint_mismatch",
                user_id=str(user.id),
                hint=pending.username,
            )
            raise InvalidCredentialsError("Invalid credentials")

        pending = self.access.take_pending(claim_key)
        if pending is None:
            raise CLIRequestNotFoundError(claim_key)

        try:
            api_key, raw_token = await self.accounts.create_api_key(
                user,
                name=_token_name(pending.client_metadata),
                from_cli=pending.client_metadata,
            )
        except Exception:
            self.access.restore_pending(pending)
            raise

        completed = self.access.complete(pending, raw_token, api_key.id)
        logger.info(
            "cli.approved", user_id=str(user.id), token_id=str(api_key.id)
        )
        return completed


def _matches_hint(user: User, hint: Optional[str]) -> bool:
    if not hint:
        return True
    return hint in (user.username, user.email)


def _token_name(client_metadata: dict) -> str:
    hostname = client_metadata.get("machine_hostname") or "unknown host"
    return f"CLI ({hostname})"[:100]

