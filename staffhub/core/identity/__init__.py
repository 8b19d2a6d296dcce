"""Identity Provider Gateway backed by a Keycloak realm.

Usage:
    from staffhub.core.identity import IdentityGateway, IdentityProviderError
"""
from .client import KeycloakClient
from .exceptions import IdentityProviderError, KeycloakAPIError, ProviderErrorKind
from .gateway import AuthResult, Challenge, IdentityGateway, TokenSet, NEW_PASSWORD_REQUIRED

__all__ = [
    "AuthResult",
    "Challenge",
    "IdentityGateway",
    "IdentityProviderError",
    "KeycloakAPIError",
    "KeycloakClient",
    "NEW_PASSWORD_REQUIRED",
    "ProviderErrorKind",
    "TokenSet",
]
