"""API token generation and hashing.

Learn: Raw tokens never touch the database. We store sha256(token) and
look tokens up by that digest, so a leaked api_keys table can't be
replayed against the API.
"""

import hashlib
import secrets

TOKEN_PREFIX = "ct_"
DISPLAY_PREFIX_LENGTH = 11  # "ct_" + 8 characters


def generate_api_token() -> str:
    """Create a new raw API token (shown to the user exactly once)."""
    return f"{TOKEN_PREFIX}{secrets.token_urlsafe(32)}"


def hash_api_token(raw_token: str) -> str:
    """One-way, deterministic digest used for storage and lookup."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def display_prefix(raw_token: str) -> str:
    """Short, non-secret identifier shown in key listings."""
    return raw_token[:DISPLAY_PREFIX_LENGTH]
