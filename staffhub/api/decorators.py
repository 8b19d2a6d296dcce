"""
Flask decorators for bearer-token authentication.

Every protected view receives an explicit ``Principal`` as its first
argument instead of reading an ambient "current user".

Validation:
- RSA-SHA256 signature verification via the realm JWKS (RFC 7517)
- Expiration and issuer validation (RFC 7519)
- JWKS caching (1-hour refresh)
- With JWT_VALIDATION_ENABLED=false the token is resolved through the
  identity provider's userinfo endpoint instead
"""
from __future__ import annotations
import logging
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)
from flask import current_app, request

from staffhub.api.services import get_services
from staffhub.core.errors import UnauthenticatedError
from staffhub.core.identity import IdentityProviderError
from staffhub.core.principal import Principal
from staffhub.core.validators import normalize_email

logger = logging.getLogger(__name__)

MISSING_HEADER_MESSAGE = "Missing Authorization Header"
INVALID_TOKEN_MESSAGE = "Invalid token"
EXPIRED_TOKEN_MESSAGE = "Token has expired"

# Global JWKS client (cached singleton)
_jwks_client: Optional[PyJWKClient] = None


class TokenValidationError(Exception):
    """Raised when JWT validation fails.

    Attributes:
        expired: True when the only problem is the ``exp`` claim
    """

    def __init__(self, message: str, expired: bool = False):
        self.expired = expired
        super().__init__(message)


def get_jwks_client() -> PyJWKClient:
    """
    Get cached JWKS client (singleton pattern).

    Returns:
        PyJWKClient: Configured client for the Keycloak realm
    """
    global _jwks_client

    if _jwks_client is None:
        cfg = current_app.config["APP_CONFIG"]
        jwks_url = f"{cfg.keycloak_url}/realms/{cfg.keycloak_realm}/protocol/openid-connect/certs"
        logger.info("Initializing JWKS client for: %s", jwks_url)
        _jwks_client = PyJWKClient(
            jwks_url,
            cache_keys=True,
            max_cached_keys=16,
            lifespan=3600,
            headers={"User-Agent": "StaffHub-API/1.0"},
        )

    return _jwks_client


def validate_jwt_token(token: str) -> Dict[str, Any]:
    """
    Validate a JWT bearer token issued by the realm.

    Args:
        token: JWT token string (without "Bearer " prefix)

    Returns:
        dict: Validated token claims

    Raises:
        TokenValidationError: If any validation fails
    """
    cfg = current_app.config["APP_CONFIG"]

    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=cfg.keycloak_issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_iss": True,
                # Keycloak access tokens carry aud=["account"], not the API client id
                "verify_aud": False,
                "require": ["exp", "iat", "sub"],
            },
            leeway=5,
        )
    except ExpiredSignatureError:
        raise TokenValidationError("Token expired (exp claim)", expired=True)
    except InvalidIssuerError as e:
        raise TokenValidationError(f"Invalid issuer (token from wrong realm): {e}")
    except InvalidSignatureError:
        raise TokenValidationError("Invalid signature (token tampered or wrong key)")
    except DecodeError as e:
        raise TokenValidationError(f"Token decode error (malformed JWT): {e}")
    except (InvalidTokenError, PyJWKClientError) as e:
        raise TokenValidationError(f"Token validation failed: {e}")

    logger.debug("JWT validated for subject %s", claims.get("sub"))
    return claims


def extract_bearer_token(header_value: Optional[str], missing_message: str = MISSING_HEADER_MESSAGE) -> str:
    """Return the token part of ``Bearer <token>``.

    Raises:
        UnauthenticatedError: If the header is absent, malformed or empty.
    """
    if not header_value or not header_value.strip():
        raise UnauthenticatedError(missing_message)
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        logger.warning("Malformed bearer header: %s", header_value[:20])
        raise UnauthenticatedError(missing_message)
    return parts[1]


def resolve_principal(token: str) -> Principal:
    """Turn a bearer token into a Principal.

    Raises:
        UnauthenticatedError: If the token is invalid, expired or revoked.
    """
    cfg = current_app.config["APP_CONFIG"]
    gateway = get_services().gateway

    try:
        if cfg.jwt_validation_enabled:
            claims = validate_jwt_token(token)
            subject_id = claims["sub"]
            if not claims.get("email"):
                subject_id, attributes = gateway.get_user(token)
                claims = {**claims, **attributes}
        else:
            subject_id, claims = gateway.get_user(token)
    except TokenValidationError as e:
        logger.warning("JWT validation failed: %s", e)
        raise UnauthenticatedError(EXPIRED_TOKEN_MESSAGE if e.expired else INVALID_TOKEN_MESSAGE)
    except IdentityProviderError as e:
        logger.warning("Identity provider rejected token: %s", e.detail or e.message)
        raise UnauthenticatedError(INVALID_TOKEN_MESSAGE)

    raw_email = claims.get("email") or claims.get("preferred_username")
    email = normalize_email(raw_email) if isinstance(raw_email, str) else ""
    if not email:
        raise UnauthenticatedError(INVALID_TOKEN_MESSAGE)
    return Principal(subject_id=subject_id, email=email, access_token=token, claims=dict(claims))


def require_bearer_token(fn):
    """
    Require a valid ``Authorization: Bearer <token>`` header.

    The decorated view is called with the resolved ``Principal`` as its first
    positional argument.

    Example:
        @bp.route("/profile")
        @require_bearer_token
        def profile(principal):
            ...
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = extract_bearer_token(request.headers.get("Authorization"))
        principal = resolve_principal(token)
        return fn(principal, *args, **kwargs)

    return wrapper
