"""
auth/passwords.py -- One-way password hashing and verification.

bcrypt is used directly (no passlib wrapper) at a fixed cost factor of 10.
Its per-hash salt and tunable work factor make offline brute force of
low-entropy secrets expensive; comparison is done inside bcrypt.checkpw.

Passwords longer than 72 bytes are rejected at the API layer (Pydantic
validator) because bcrypt 4.1+ raises on them instead of truncating.

apply_password() is the only code path that writes User.hashed_password after
registration. Flows that do not change the password never touch the field,
so a save never re-hashes an existing digest.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import User

_BCRYPT_ROUNDS = 10


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or empty hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


def apply_password(user: User, plain: str) -> None:
    """Replace the user's password hash with a fresh hash of plain."""
    user.hashed_password = hash_password(plain)


# Timing equalization dummy hash.
# Login always runs bcrypt once, against this hash when the email is unknown,
# so response time does not reveal whether an account exists.
DUMMY_HASH: str = hash_password("campgate_timing_dummy")
