"""
API request and response models for campgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (statusCode, isEmailVerified, newPassword, ...).
Request models accept both the camelCase alias and the Python field name;
response models are dumped with by_alias=True.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Avatar, Principal, User, UserRole

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt refuses secrets longer than 72 bytes.
_MAX_PASSWORD_BYTES = 72


# Identifier fields are trimmed per model. Passwords are taken verbatim except
# at registration.
def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _check_password(value: str) -> str:
    if not value.strip():
        raise ValueError("Password is required")
    if len(value.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {_MAX_PASSWORD_BYTES} bytes")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ApiResponse(_CamelModel):
    """Success envelope: {statusCode, data, message, success}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    status_code: int
    data: Any = None
    message: str = "Success"

    @computed_field
    @property
    def success(self) -> bool:
        return self.status_code < 400


class ErrorResponse(_CamelModel):
    """Error envelope: {statusCode, data: null, message, success: false, errors}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    status_code: int
    data: None = None
    message: str
    success: bool = False
    errors: list[Any] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(min_length=1, max_length=255, pattern=EMAIL_PATTERN)
    username: str = Field(min_length=3, max_length=255)
    password: str
    full_name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[UserRole] = None

    @field_validator("email", "username", "full_name", "password", mode="before")
    @classmethod
    def trim(cls, value: Any) -> Any:
        return _strip(value)

    @field_validator("username")
    @classmethod
    def username_lowercase(cls, value: str) -> str:
        if value != value.lower():
            raise ValueError("Username must be in lower case")
        return value

    @field_validator("password")
    @classmethod
    def password_rules(cls, value: str) -> str:
        return _check_password(value)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login. A missing email is a 400 from the flow, not a 422."""

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def trim_email(cls, value: Any) -> Any:
        return _strip(value)


class RefreshTokenRequest(_CamelModel):
    """Optional body for POST /api/v1/auth/refresh-token (cookie takes precedence)."""

    refresh_token: Optional[str] = None


class ForgotPasswordRequest(_CamelModel):
    email: str = Field(min_length=1, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def trim_email(cls, value: Any) -> Any:
        return _strip(value)


class ResetPasswordRequest(_CamelModel):
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_rules(cls, value: str) -> str:
        return _check_password(value)


class ChangePasswordRequest(_CamelModel):
    old_password: str = Field(min_length=1, max_length=255)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_rules(cls, value: str) -> str:
        return _check_password(value)


# ---------------------------------------------------------------------------
# Response payloads
# ---------------------------------------------------------------------------


class AvatarResponse(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    url: str
    local_path: str = ""

    @classmethod
    def from_domain(cls, avatar: Avatar) -> "AvatarResponse":
        return cls(url=avatar.url, local_path=avatar.local_path)


class UserResponse(_CamelModel):
    """Public view of an account. Never carries password or token material."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    email: str
    username: str
    full_name: Optional[str] = None
    avatar: AvatarResponse = Field(default_factory=lambda: AvatarResponse.from_domain(Avatar()))
    is_email_verified: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_domain(cls, user: User | Principal) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            full_name=user.full_name,
            avatar=AvatarResponse.from_domain(user.avatar),
            is_email_verified=user.is_email_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
            role=getattr(user, "role", None),
        )


def envelope(status_code: int, data: Any = None, message: str = "Success") -> dict:
    """Render a success envelope as a JSON-ready dict."""
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    return ApiResponse(status_code=status_code, data=data, message=message).model_dump(by_alias=True)
