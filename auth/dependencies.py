"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and
project-role authorization.

Authentication (get_current_user):
  The access token is read from the "accessToken" cookie first, then from an
  Authorization: Bearer header. Every verification failure -- bad signature,
  malformed token, expired, unknown subject -- produces the same 401 so the
  response never reveals which check failed. The resolved Principal (no
  secret fields) is also stored on request.state.user.

Authorization (require_project_role):
  A dependency factory. The returned dependency reads project_id from the
  path, looks up the caller's membership, attaches the role to the Principal
  and raises 403 when the role is not in the allowed set. It never writes.

Layer rule: no imports from api/. auth/dependencies.py may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import Principal, User
from auth.service import AuthService
from auth.tokens import ACCESS_COOKIE, decode_access_token
from core.errors import BadRequestError, ForbiddenError, UnauthorizedError


def to_principal(user: User) -> Principal:
    return Principal(
        id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        avatar=user.avatar,
        is_email_verified=user.is_email_verified,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _extract_token(request: Request) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_current_user(request: Request) -> Principal:
    """Require a valid access token. Raises 401 otherwise.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(principal: Principal = Depends(get_current_user)): ...
    """
    token = _extract_token(request)
    if token is None:
        raise UnauthorizedError("Unauthorized request")

    payload = decode_access_token(token)
    if payload is None:
        raise UnauthorizedError("Invalid access token")

    user = request.app.state.user_store.get_by_id(payload["sub"])
    if user is None:
        raise UnauthorizedError("Invalid access token")

    principal = to_principal(user)
    request.state.user = principal
    return principal


def require_project_role(*roles: str):
    """Build a dependency that admits only members of project_id holding one of roles.

    Usage:
        @router.delete("/projects/{project_id}", dependencies=[Depends(require_project_role("admin"))])
    """
    allowed = {str(getattr(r, "value", r)) for r in roles}

    def _check(request: Request, principal: Principal = Depends(get_current_user)) -> Principal:
        project_id = request.path_params.get("project_id")
        if not project_id:
            raise BadRequestError("Project id is missing")

        member = request.app.state.user_store.get_project_member(project_id, principal.id)
        if member is None:
            raise BadRequestError("Project not found")

        principal.role = member.role
        if member.role not in allowed:
            raise ForbiddenError("You do not have permission to perform this action")
        return principal

    return _check


def get_auth_service(request: Request) -> AuthService:
    """Build the per-request AuthService from the stores wired into app.state."""
    return AuthService(request.app.state.user_store, request.app.state.mailer)
