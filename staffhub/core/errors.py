"""Service-level error taxonomy.

Every error raised by the core carries an HTTP-equivalent status and a single
human-readable message. The Flask layer renders them as ``{"error": message}``.
"""
from __future__ import annotations
from typing import Optional

GENERIC_ERROR_MESSAGE = "An unexpected error occurred, please try again"
NOT_AUTHORIZED_MESSAGE = "You are not authorized to perform this action"


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    status = 500
    default_message = GENERIC_ERROR_MESSAGE

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None):
        self.message = message or self.default_message
        if status is not None:
            self.status = status
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert to the JSON error body."""
        return {"error": self.message}


class ValidationError(ServiceError):
    """Missing or malformed input field."""

    status = 400
    default_message = "Invalid request"


class NotFoundError(ServiceError):
    """Target entity is absent from the local store."""

    status = 404
    default_message = "User not found"


class AccountNotFoundError(NotFoundError):
    """Login attempted for an email with no local account."""

    status = 401
    default_message = "Account does not exist"


class UnauthenticatedError(ServiceError):
    """Missing, malformed or expired bearer credential."""

    status = 401
    default_message = "Missing Authorization Header"


class UnauthorizedError(ServiceError):
    """Caller is authenticated but lacks the required tier."""

    status = 403
    default_message = NOT_AUTHORIZED_MESSAGE


class ScopeViolationError(UnauthorizedError):
    """Caller is senior enough but is acting outside its own branch or area."""

    default_message = "You are not authorized to assign users to the specified branch."


class ConflictError(ServiceError):
    """Duplicate name/email, or dependent children block a deletion."""

    status = 409
    default_message = "Resource already exists"


class UnexpectedError(ServiceError):
    """Anything else. The message never carries internal detail."""

    status = 500
    default_message = GENERIC_ERROR_MESSAGE
