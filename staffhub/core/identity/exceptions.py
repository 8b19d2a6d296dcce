"""Identity-provider errors and their fixed user-facing messages."""
from __future__ import annotations
import enum
from typing import Optional

from staffhub.core.errors import GENERIC_ERROR_MESSAGE, ServiceError


class ProviderErrorKind(str, enum.Enum):
    INVALID_PASSWORD = "invalid_password"
    CODE_MISMATCH = "code_mismatch"
    EXPIRED_CODE = "expired_code"
    USER_NOT_CONFIRMED = "user_not_confirmed"
    USER_NOT_FOUND = "user_not_found"
    NOT_AUTHORIZED = "not_authorized"
    TOO_MANY_REQUESTS = "too_many_requests"
    USER_ALREADY_EXISTS = "user_already_exists"
    INVALID_PARAMETER = "invalid_parameter"
    UNEXPECTED = "unexpected"


# kind -> (status, message)
PROVIDER_ERROR_TABLE = {
    ProviderErrorKind.INVALID_PASSWORD: (400, "Password does not meet the requirements"),
    ProviderErrorKind.CODE_MISMATCH: (400, "Invalid session code"),
    ProviderErrorKind.EXPIRED_CODE: (400, "Session code has expired"),
    ProviderErrorKind.USER_NOT_CONFIRMED: (401, "Account not confirmed"),
    ProviderErrorKind.USER_NOT_FOUND: (401, "Account does not exist"),
    ProviderErrorKind.NOT_AUTHORIZED: (401, "Invalid email or password"),
    ProviderErrorKind.TOO_MANY_REQUESTS: (429, "Too many requests"),
    ProviderErrorKind.USER_ALREADY_EXISTS: (409, "User already exists"),
    ProviderErrorKind.INVALID_PARAMETER: (400, "Invalid parameters"),
    ProviderErrorKind.UNEXPECTED: (500, GENERIC_ERROR_MESSAGE),
}


class IdentityProviderError(ServiceError):
    """A provider failure translated to the fixed taxonomy.

    Attributes:
        kind: ProviderErrorKind
        detail: Raw provider detail, for logs only (never rendered)
    """

    def __init__(self, kind: ProviderErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        status, message = PROVIDER_ERROR_TABLE[kind]
        super().__init__(message, status)


class KeycloakAPIError(Exception):
    """HTTP error from Keycloak (token endpoint or Admin API).

    Attributes:
        status_code: HTTP status code
        message: Raw response body
        endpoint: URL that failed
        error: OAuth/Keycloak error code, when the body is JSON
        error_description: Human description, when the body is JSON
    """

    def __init__(self, status_code: int, message: str, endpoint: str,
                 error: Optional[str] = None, error_description: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        self.error = error or ""
        self.error_description = error_description or ""
        super().__init__(f"[{status_code}] {endpoint}: {error or message}")


ACCOUNT_NOT_SET_UP = "account is not fully set up"


def translate_api_error(exc: KeycloakAPIError) -> IdentityProviderError:
    """Map a raw Keycloak HTTP error onto the provider error taxonomy."""
    status = exc.status_code
    error = exc.error.lower()
    description = exc.error_description.lower()

    if status == 429:
        kind = ProviderErrorKind.TOO_MANY_REQUESTS
    elif status == 409:
        kind = ProviderErrorKind.USER_ALREADY_EXISTS
    elif status == 404:
        kind = ProviderErrorKind.USER_NOT_FOUND
    elif status == 401 or error in ("invalid_grant", "invalid_token", "unauthorized_client"):
        kind = ProviderErrorKind.NOT_AUTHORIZED
    elif status == 400 and (error.startswith("invalidpassword") or "invalid password" in description):
        kind = ProviderErrorKind.INVALID_PASSWORD
    elif status == 400:
        kind = ProviderErrorKind.INVALID_PARAMETER
    else:
        kind = ProviderErrorKind.UNEXPECTED
    return IdentityProviderError(kind, str(exc))
