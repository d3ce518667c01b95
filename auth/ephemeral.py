"""
auth/ephemeral.py -- Single-use, time-boxed tokens for email verification and
password reset.

Security design:
  The plain token is 20 random bytes (160 bits) hex-encoded. It is handed to
  the user exactly once, embedded in a mailed URL, and never stored. The
  store keeps SHA-256(plain) plus an expiry. A fast deterministic digest is
  enough here: the input is high-entropy random data, not a password, and the
  digest must be reproducible so the store can look the user up by it.

  Validation recomputes the digest and requires BOTH a constant-time match
  and an unexpired window. Callers only ever see a boolean, so a response
  can never reveal which of the two conditions failed.

  Expiry is judged at validation time against the current clock, never at
  issuance. Expired tokens are not swept; they simply stop validating.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

TOKEN_BYTES = 20
TOKEN_TTL = timedelta(minutes=20)


@dataclass(frozen=True)
class TemporaryToken:
    plain_token: str
    hashed_token: str
    expires_at: datetime


def hash_token(plain: str) -> str:
    """Return the SHA-256 hex digest of a token string."""
    return hashlib.sha256(plain.encode("utf-8")).hexdigest()


def generate_temporary_token(now: datetime | None = None) -> TemporaryToken:
    """Create a fresh plain token, its digest, and an expiry TOKEN_TTL from now."""
    issued = now or datetime.now(timezone.utc)
    plain = secrets.token_hex(TOKEN_BYTES)
    return TemporaryToken(
        plain_token=plain,
        hashed_token=hash_token(plain),
        expires_at=issued + TOKEN_TTL,
    )


def validate_temporary_token(
    plain: str,
    stored_hash: str | None,
    stored_expiry: datetime | None,
    now: datetime | None = None,
) -> bool:
    """Return True iff plain hashes to stored_hash and stored_expiry is in the future."""
    if not plain or not stored_hash or stored_expiry is None:
        return False
    current = now or datetime.now(timezone.utc)
    digest_ok = hmac.compare_digest(hash_token(plain), stored_hash)
    return digest_ok and stored_expiry > current
