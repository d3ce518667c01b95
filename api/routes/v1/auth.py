"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register                          -- create account, mail verification link
  POST /api/v1/auth/login                             -- password login; sets both token cookies
  GET  /api/v1/auth/verify-email/{verification_token} -- consume verification link
  POST /api/v1/auth/refresh-token                     -- rotate token pair (cookie or body)
  POST /api/v1/auth/forgot-password                   -- mail password-reset link
  POST /api/v1/auth/reset-password/{reset_token}      -- consume reset link, set new password
  POST /api/v1/auth/logout                            -- clear stored refresh token and cookies
  POST /api/v1/auth/current-user                      -- the authenticated principal
  POST /api/v1/auth/change-password                   -- change password (old one required)
  POST /api/v1/auth/resend-email-verification         -- fresh verification link

Handlers are thin: parse the request, call AuthService, wrap the result in
the {statusCode, data, message, success} envelope, and manage cookies.
Failures are ApiError subclasses raised by the service or the access guard;
api/main.py renders them.

Handlers that touch the store are plain `def` so FastAPI runs them in its
threadpool -- bcrypt, SQLite and SMTP never block the event loop.

Security:
  POST /login and POST /forgot-password are rate-limited per IP.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    envelope,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import Principal
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from core.config import get_settings

# Auth policy:
# - register, login, verify-email, refresh-token, forgot-password,
#   reset-password: public -- the caller has no access token yet
# - logout, current-user, change-password, resend-email-verification:
#   require a valid access token (get_current_user)
router = APIRouter()

_rate_limit = get_settings().login_rate_limit


def _verification_url_base(request: Request) -> str:
    """Absolute URL of the verify-email route without its token segment."""
    return str(request.url_for("verify_email", verification_token="-")).rsplit("/", 1)[0]


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an unverified account and mail the verification link.

    Mail delivery is best-effort: the response reports success even when the
    mail could not be sent (the user can ask for a new link later).
    """
    user = service.register(
        email=body.email,
        username=body.username,
        password=body.password,
        full_name=body.full_name,
        role=body.role.value if body.role is not None else None,
        verification_url_base=_verification_url_base(request),
    )
    return JSONResponse(
        status_code=201,
        content=envelope(
            201,
            {"user": UserResponse.from_domain(user).model_dump(by_alias=True)},
            "User registered successfully and verification email has been sent on your email",
        ),
    )


@limiter.limit(_rate_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login")
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; return and set both tokens."""
    result = service.login(body.email, body.password)
    resp = JSONResponse(
        status_code=200,
        content=envelope(
            200,
            {
                "user": UserResponse.from_domain(result.user).model_dump(by_alias=True),
                "accessToken": result.tokens.access_token,
                "refreshToken": result.tokens.refresh_token,
            },
            "User logged in successfully",
        ),
    )
    set_auth_cookies(resp, result.tokens.access_token, result.tokens.refresh_token)
    return _no_store(resp)


@router.get("/auth/verify-email/{verification_token}")
def verify_email(verification_token: str, service: AuthService = Depends(get_auth_service)) -> dict:
    service.verify_email(verification_token)
    return envelope(200, {"isEmailVerified": True}, "Email is verified")


@router.post("/auth/refresh-token")
def refresh_access_token(
    request: Request,
    body: Optional[RefreshTokenRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange a refresh token for a new pair. The cookie wins over the body."""
    incoming = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    tokens = service.refresh_access_token(incoming)
    resp = JSONResponse(
        status_code=200,
        content=envelope(
            200,
            {"accessToken": tokens.access_token, "refreshToken": tokens.refresh_token},
            "Access token refreshed",
        ),
    )
    set_auth_cookies(resp, tokens.access_token, tokens.refresh_token)
    return _no_store(resp)


@limiter.limit(_rate_limit)
@router.post("/auth/forgot-password")
def forgot_password_request(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.forgot_password_request(body.email)
    return envelope(200, {}, "Password reset mail has been sent on your mail id")


@router.post("/auth/reset-password/{reset_token}")
def reset_forgot_password(
    reset_token: str,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.reset_forgot_password(reset_token, body.new_password)
    return envelope(200, {}, "Password reset successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(
    principal: Principal = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Invalidate the stored refresh token and clear both cookies."""
    service.logout(principal.id)
    resp = JSONResponse(status_code=200, content=envelope(200, {}, "User logged out"))
    clear_auth_cookies(resp)
    return resp


@router.post("/auth/current-user")
def current_user(principal: Principal = Depends(get_current_user)) -> dict:
    return envelope(200, UserResponse.from_domain(principal), "Current user fetched successfully")


@router.post("/auth/change-password")
def change_current_password(
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.change_current_password(principal.id, body.old_password, body.new_password)
    return envelope(200, {}, "Password changed successfully")


@router.post("/auth/resend-email-verification")
def resend_email_verification(
    request: Request,
    principal: Principal = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.resend_email_verification(principal.id, _verification_url_base(request))
    return envelope(200, {}, "Mail has been sent to your email ID")
