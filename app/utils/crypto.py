"""
Crypto utilities - bcrypt password hashing.

Supports both bcrypt ($2b$) and legacy werkzeug (scrypt/pbkdf2) hashes
so directory entries imported from older tooling keep verifying.
"""

import bcrypt
from werkzeug.security import check_password_hash

DEFAULT_ROUNDS = 12


def hash_password(plain_password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a plain-text password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str | None, password_hash: str | None) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and werkzeug (scrypt/pbkdf2) formats.
    A missing password or hash never verifies.
    """
    if not plain_password or not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)
