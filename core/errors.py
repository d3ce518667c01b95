"""
core/errors.py -- Typed error taxonomy shared by auth/ and api/.

Every flow-level failure is raised as an ApiError subclass carrying an HTTP
status code and a client-safe message. api/main.py owns the single boundary
that renders these into the error envelope:

    {"statusCode": 401, "data": null, "message": "...", "success": false, "errors": []}

Messages are written for the end user. Never put exception text, token
material, or stack detail into an ApiError message.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class ApiError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = 500
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None, errors: list | None = None) -> None:
        self.message = message or self.default_message
        self.errors = list(errors or [])
        super().__init__(self.message)


class BadRequestError(ApiError):
    status_code = 400
    default_message = "Bad request"


class UserValidationError(BadRequestError):
    """Raised by the store when a full-document validation rule fails."""

    default_message = "User record failed validation"


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = "Unauthorized request"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Conflict"


class InvalidResetTokenError(ApiError):
    """Password-reset token is unknown or expired.

    Uses its own client-error status (489) so the reset page can tell this
    apart from a 400 body validation failure and prompt for a new link.
    """

    status_code = 489
    default_message = "Token is invalid or expired"


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal server error"
