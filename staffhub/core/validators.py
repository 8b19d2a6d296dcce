"""Input validation helpers for user data.

Every helper raises ``ValidationError`` so callers can fail fast before any
persistence or identity-provider call.
"""
from __future__ import annotations
import datetime
import re
from typing import Iterable, Mapping, Optional

from staffhub.core.errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

EMAIL_MAX_LENGTH = 254
EMAIL_PATTERN = re.compile(r"^[^@\s]+@([^@\s]+\.)+[^@\s]+$")

INVALID_EMAIL_MESSAGE = "The email provided is invalid. Please provide a valid email address."


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_text(value) -> bool:
    """True for a non-blank string; numbers, lists and objects are not text."""
    return isinstance(value, str) and bool(value.strip())


def normalize_email(email: Optional[str]) -> str:
    """Lowercase and trim an email for storage and lookup."""
    if email is None:
        return ""
    if not isinstance(email, str):
        raise ValidationError(INVALID_EMAIL_MESSAGE)
    return email.strip().lower()


def validate_email(email: Optional[str], message: str = INVALID_EMAIL_MESSAGE) -> str:
    """Validate email address.

    Args:
        email: Email address to validate
        message: Error message to raise on failure

    Returns:
        Normalized (lowercased) email address

    Raises:
        ValidationError: If email is invalid
    """
    if email is not None and not isinstance(email, str):
        raise ValidationError(message)
    email = normalize_email(email)
    if not email or len(email) > EMAIL_MAX_LENGTH or not EMAIL_PATTERN.match(email):
        raise ValidationError(message)
    return email


def optional_text(value, field: str) -> Optional[str]:
    """Trimmed text of a scalar field; blank becomes None.

    Numbers are accepted and stringified, lists, objects and booleans are not.
    """
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValidationError(f"Invalid value for {field}")
    return str(value).strip() or None


def parse_date(value, field: str) -> Optional[datetime.date]:
    """Parse a ``YYYY-MM-DD`` date; blank values return None."""
    if is_blank(value):
        return None
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.datetime.strptime(str(value).strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(
            f"Invalid date format for {field}. Please provide a valid date in the format 'YYYY-MM-DD'."
        )


def missing_fields(payload: Mapping, required: Iterable[str]) -> list[str]:
    return [key for key in required if is_blank(payload.get(key))]


def require_fields(payload: Mapping, required: Iterable[str], message: Optional[str] = None) -> None:
    """Raise ``ValidationError`` naming every blank required field.

    Args:
        payload: Request body
        required: Keys that must be present and non-blank
        message: Fixed message to use instead of the generated one
    """
    missing = missing_fields(payload, required)
    if missing:
        if message:
            raise ValidationError(message)
        raise ValidationError(
            f"The following required fields are missing: {', '.join(missing)}. "
            "Please provide them to proceed."
        )
