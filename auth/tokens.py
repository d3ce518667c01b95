"""
auth/tokens.py -- JWT access/refresh tokens and auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets, so neither kind verifies as the other.

       Access tokens carry {sub, email, username} and live for minutes.
       Refresh tokens carry only {sub} and live for days; minimal claims
       limit what a leaked refresh token exposes.

       Every token gets a random jti, so two tokens minted for the same user
       in the same second are still different strings. Rotation depends on
       that: the stored refresh digest must change on every refresh.

  Verification returns None on any failure -- bad signature, malformed
       token, expired, missing subject. Callers turn None into a single 401
       and never learn (or leak) which check failed.

  Secrets are sourced from core.config.get_settings() at module load.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: dict, secret: str, duration: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def _decode(token: str, secret: str) -> dict | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def create_access_token(user_id: str, email: str, username: str, expire_seconds: int = 0) -> str:
    """Encode a short-lived access token.

    Args:
        user_id:        Opaque user id, stored as the subject claim.
        email:          Account email at issue time.
        username:       Account username at issue time.
        expire_seconds: Lifetime override. 0 (default) uses
                        Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    return _encode(
        {"sub": user_id, "email": email, "username": username},
        _settings.access_token_secret,
        duration,
    )


def create_refresh_token(user_id: str, expire_seconds: int = 0) -> str:
    """Encode a long-lived refresh token carrying only the subject claim."""
    duration = expire_seconds if expire_seconds > 0 else _settings.refresh_token_expire_seconds
    return _encode({"sub": user_id}, _settings.refresh_token_secret, duration)


def decode_access_token(token: str) -> dict | None:
    """Verify an access token. Returns the claims dict or None on any failure."""
    return _decode(token, _settings.access_token_secret)


def decode_refresh_token(token: str) -> dict | None:
    """Verify a refresh token. Returns the claims dict or None on any failure."""
    return _decode(token, _settings.refresh_token_secret)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, access_token: str, refresh_token: str) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    secure: only sent over HTTPS unless SECURE_COOKIES=false (local dev).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    max_age matches each token's own lifetime so cookie and JWT expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        secure=_settings.secure_cookies,
        samesite="lax",
        max_age=_settings.access_token_expire_seconds,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        secure=_settings.secure_cookies,
        samesite="lax",
        max_age=_settings.refresh_token_expire_seconds,
    )


def clear_auth_cookies(response) -> None:
    """Expire both auth cookies. Attributes must match the ones used to set them."""
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, httponly=True, secure=_settings.secure_cookies, samesite="lax")
