"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape of the data.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """Project-scoped capability tier. Independent of global account state."""

    ADMIN = "admin"
    PROJECT_ADMIN = "project_admin"
    MEMBER = "member"


AVAILABLE_USER_ROLES: tuple[str, ...] = tuple(r.value for r in UserRole)

DEFAULT_AVATAR_URL = "https://placehold.co/200x200"


@dataclass
class Avatar:
    """Profile picture reference. local_path is empty until an upload stores a file."""

    url: str = DEFAULT_AVATAR_URL
    local_path: str = ""


@dataclass
class User:
    """The full credential record for one account.

    refresh_token holds the SHA-256 digest of the one refresh token that is
    currently valid for this user (None after logout or before first login).
    Issuing a new refresh token overwrites it, which is what makes rotation
    invalidate the previous token.

    The two ephemeral token pairs (email verification, password reset) store
    only the SHA-256 digest of the token mailed to the user plus its expiry.
    Each pair is always set or cleared as a unit.
    """

    username: str
    email: str
    hashed_password: str
    id: str | None = None
    full_name: str | None = None
    avatar: Avatar = field(default_factory=Avatar)
    is_email_verified: bool = False
    refresh_token: str | None = None
    email_verification_token: str | None = None
    email_verification_expiry: datetime | None = None
    forgot_password_token: str | None = None
    forgot_password_expiry: datetime | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Principal:
    """The authenticated caller attached to a request by the access guard.

    Carries no secret fields. role is None until a project permission check
    resolves the caller's membership role for the project in the path.
    """

    id: str
    username: str
    email: str
    full_name: str | None = None
    avatar: Avatar = field(default_factory=Avatar)
    is_email_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    role: str | None = None


@dataclass
class ProjectMember:
    """Membership tuple consumed by require_project_role(). Unique per (user, project)."""

    user_id: str
    project_id: str
    role: str = UserRole.MEMBER.value
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
