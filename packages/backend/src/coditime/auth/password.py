"""Password hashing utilities.

Learn: bcrypt salts automatically and encodes the work factor in the hash
itself ("$2b$12$..."), so raising ROUNDS later only affects new hashes.
bcrypt only reads the first 72 bytes of input; longer passwords are
truncated before hashing and before checking so both sides agree.
"""

import bcrypt

ROUNDS = 12
_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash.

    A malformed stored hash counts as a mismatch rather than an error, so
    a corrupted row reads as "wrong password" to the caller.
    """
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False
