"""Identity Provider Gateway.

Thin adapter over a Keycloak realm exposing exactly the operations the
session, password and provisioning services need. Every public method either
returns normally or raises ``IdentityProviderError`` with a kind from the
fixed taxonomy; raw HTTP errors never escape this module.

Usage:
    gateway = IdentityGateway.from_config(cfg)
    result = gateway.authenticate("alice@example.com", "s3cret")
    if result.challenge:
        ...  # caller drives the set-new-password flow
"""
from __future__ import annotations
import hashlib
import hmac
import logging
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

import jwt
import requests
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from .client import KeycloakClient
from .exceptions import (
    ACCOUNT_NOT_SET_UP,
    IdentityProviderError,
    KeycloakAPIError,
    ProviderErrorKind,
    translate_api_error,
)

logger = logging.getLogger(__name__)

NEW_PASSWORD_REQUIRED = "NEW_PASSWORD_REQUIRED"
UPDATE_PASSWORD = "UPDATE_PASSWORD"
VERIFY_EMAIL = "VERIFY_EMAIL"

RESET_DIGEST_ATTRIBUTE = "password_reset_digest"
RESET_EXPIRY_ATTRIBUTE = "password_reset_expires_at"
RESET_CODE_DIGITS = 6

CodeSender = Callable[[str, str], None]


def log_reset_code_issued(email: str, code: str) -> None:
    """Default code sender: records that a code went out, never the code itself."""
    logger.info("Password reset code issued for %s", email)


def log_invitation_issued(email: str, temp_password: str) -> None:
    logger.info("Temporary password issued for %s", email)


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass(frozen=True)
class Challenge:
    name: str
    session_code: str


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an authenticate/refresh call: exactly one of tokens or challenge."""
    tokens: Optional[TokenSet] = None
    challenge: Optional[Challenge] = None


@dataclass
class IdentityGateway:
    client: KeycloakClient
    oidc_client_id: str
    oidc_client_secret: str = ""
    challenge_signing_key: str = ""
    challenge_ttl_seconds: int = 180
    reset_code_ttl_seconds: int = 3600
    code_sender: CodeSender = field(default=log_reset_code_issued)
    invite_sender: CodeSender = field(default=log_invitation_issued)

    @classmethod
    def from_config(cls, cfg, code_sender: Optional[CodeSender] = None,
                    invite_sender: Optional[CodeSender] = None) -> "IdentityGateway":
        client = KeycloakClient(cfg.keycloak_url, cfg.keycloak_realm)
        client.use_service_account(cfg.keycloak_service_client_id, cfg.keycloak_service_client_secret)
        return cls(
            client=client,
            oidc_client_id=cfg.oidc_client_id,
            oidc_client_secret=cfg.oidc_client_secret,
            challenge_signing_key=cfg.challenge_signing_key,
            challenge_ttl_seconds=cfg.challenge_ttl_seconds,
            reset_code_ttl_seconds=cfg.reset_code_ttl_seconds,
            code_sender=code_sender or log_reset_code_issued,
            invite_sender=invite_sender or log_invitation_issued,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Account lifecycle
    # ─────────────────────────────────────────────────────────────────────

    def register(self, email: str, temp_password: str) -> None:
        """Create the account with a temporary password that must be replaced on first login."""
        with self._provider_call("registering user", email):
            self.client.post("/users", json={
                "username": email,
                "email": email,
                "enabled": True,
                "emailVerified": False,
                "requiredActions": [UPDATE_PASSWORD],
                "credentials": [{"type": "password", "value": temp_password, "temporary": True}],
            })
        self.invite_sender(email, temp_password)
        logger.info("Registered %s with the identity provider", email)

    def delete_user(self, email: str) -> None:
        with self._provider_call("deleting user", email):
            user = self._find_user(email)
            self.client.delete(f"/users/{user['id']}")
        logger.info("Deleted %s from the identity provider", email)

    def verify_email(self, email: str) -> None:
        with self._provider_call("verifying email", email):
            user = self._find_user(email)
            self.client.put(f"/users/{user['id']}", json={
                "emailVerified": True,
                "requiredActions": [a for a in user.get("requiredActions") or [] if a != VERIFY_EMAIL],
            })
        logger.info("Email verified for %s", email)

    # ─────────────────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────────────────

    def authenticate(self, email: str, password: str) -> AuthResult:
        """Password grant. Pending password setup becomes a NEW_PASSWORD_REQUIRED challenge."""
        with self._provider_call("authenticating user", email):
            try:
                payload = self.client.token_request(self._grant({
                    "grant_type": "password",
                    "username": email,
                    "password": password,
                    "scope": "openid email",
                }))
            except KeycloakAPIError as exc:
                if not self._is_not_set_up(exc):
                    raise
                return AuthResult(challenge=self._challenge_for(self._find_user(email), email))
        logger.info("Authentication successful for %s", email)
        return AuthResult(tokens=self._token_set(payload))

    def refresh_token(self, refresh_token: str, subject_id: str) -> AuthResult:
        """Refresh grant; the refreshed token must belong to ``subject_id``."""
        with self._provider_call("refreshing token", subject_id):
            try:
                payload = self.client.token_request(self._grant({
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                }))
            except KeycloakAPIError as exc:
                if not self._is_not_set_up(exc):
                    raise
                user = self.client.get(f"/users/{subject_id}").json()
                return AuthResult(challenge=self._challenge_for(user, user.get("email") or user.get("username", "")))
            tokens = self._token_set(payload, fallback_refresh=refresh_token)
            if self._token_subject(tokens.access_token) != subject_id:
                raise IdentityProviderError(ProviderErrorKind.NOT_AUTHORIZED, "refresh token subject mismatch")
        logger.info("Token refreshed successfully")
        return AuthResult(tokens=tokens)

    def revoke_token(self, access_token: str) -> None:
        """Sign the token's owner out of every session."""
        with self._provider_call("revoking token"):
            info = self.client.userinfo(access_token)
            self.client.post(f"/users/{info['sub']}/logout")
        logger.info("Token revoked successfully")

    def get_user(self, access_token: str) -> Tuple[str, Dict[str, Any]]:
        """Return ``(subject_id, attributes)`` for an end-user access token."""
        with self._provider_call("getting user"):
            info = self.client.userinfo(access_token)
        return info["sub"], info

    # ─────────────────────────────────────────────────────────────────────
    # Passwords
    # ─────────────────────────────────────────────────────────────────────

    def set_new_password(self, email: str, new_password: str, session_code: str) -> None:
        """Answer a NEW_PASSWORD_REQUIRED challenge."""
        with self._provider_call("setting new password", email):
            self._verify_session_code(email, session_code)
            user = self._find_user(email)
            self._set_password(user["id"], new_password)
            self._drop_required_action(user, UPDATE_PASSWORD)
        logger.info("New password set for %s", email)

    def request_password_reset(self, email: str) -> None:
        """Issue a one-time confirmation code and hand it to the code sender."""
        with self._provider_call("initiating forgot password", email):
            user = self._find_user(email)
            code = f"{secrets.randbelow(10 ** RESET_CODE_DIGITS):0{RESET_CODE_DIGITS}d}"
            attributes = dict(user.get("attributes") or {})
            attributes[RESET_DIGEST_ATTRIBUTE] = [self._reset_digest(email, code)]
            attributes[RESET_EXPIRY_ATTRIBUTE] = [str(int(time.time()) + self.reset_code_ttl_seconds)]
            self.client.put(f"/users/{user['id']}", json={"attributes": attributes})
        self.code_sender(email, code)
        logger.info("Forgot password initiated by %s", email)

    def confirm_password_reset(self, email: str, new_password: str, confirmation_code: str) -> None:
        with self._provider_call("confirming forgot password", email):
            user = self._find_user(email)
            attributes = dict(user.get("attributes") or {})
            digest = _first(attributes.get(RESET_DIGEST_ATTRIBUTE))
            expires_at = _first(attributes.get(RESET_EXPIRY_ATTRIBUTE))
            if not digest or not hmac.compare_digest(digest, self._reset_digest(email, confirmation_code)):
                raise IdentityProviderError(ProviderErrorKind.CODE_MISMATCH, "reset code mismatch")
            if not expires_at or int(expires_at) < int(time.time()):
                raise IdentityProviderError(ProviderErrorKind.EXPIRED_CODE, "reset code expired")
            self._set_password(user["id"], new_password)
            attributes.pop(RESET_DIGEST_ATTRIBUTE, None)
            attributes.pop(RESET_EXPIRY_ATTRIBUTE, None)
            self.client.put(f"/users/{user['id']}", json={"attributes": attributes})
        logger.info("Forgot password confirmed for %s", email)

    def admin_set_password(self, email: str, new_password: str) -> None:
        """Set a permanent password on behalf of the user."""
        with self._provider_call("admin setting password", email):
            user = self._find_user(email)
            self._set_password(user["id"], new_password)
            self._drop_required_action(user, UPDATE_PASSWORD)
        logger.info("Password set for %s", email)

    def change_password(self, access_token: str, old_password: str, new_password: str) -> None:
        """Self-service change: the old password is re-checked before the new one is set."""
        with self._provider_call("changing password"):
            info = self.client.userinfo(access_token)
            username = info.get("preferred_username") or info.get("email")
            self.client.token_request(self._grant({
                "grant_type": "password",
                "username": username,
                "password": old_password,
            }))
            self._set_password(info["sub"], new_password)
        logger.info("Password changed successfully for subject %s", info["sub"])

    # ─────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────

    @contextmanager
    def _provider_call(self, action: str, subject: str = ""):
        """Translate anything raised inside the block into IdentityProviderError."""
        try:
            yield
        except IdentityProviderError as exc:
            logger.error("Error %s %s: %s", action, subject, exc.detail or exc.message)
            raise
        except KeycloakAPIError as exc:
            logger.error("Error %s %s: %s", action, subject, exc)
            raise translate_api_error(exc) from exc
        except requests.RequestException as exc:
            logger.error("Error %s %s: %s", action, subject, exc)
            raise IdentityProviderError(ProviderErrorKind.UNEXPECTED, str(exc)) from exc

    def _grant(self, data: Dict[str, str]) -> Dict[str, str]:
        data = dict(data, client_id=self.oidc_client_id)
        if self.oidc_client_secret:
            data["client_secret"] = self.oidc_client_secret
        return data

    def _find_user(self, email: str) -> Dict[str, Any]:
        resp = self.client.get("/users", params={"email": email, "exact": "true"})
        for user in resp.json() or []:
            if (user.get("email") or "").lower() == email.lower() or user.get("username") == email.lower():
                return user
        raise IdentityProviderError(ProviderErrorKind.USER_NOT_FOUND, f"no provider account for {email}")

    def _set_password(self, user_id: str, password: str) -> None:
        self.client.put(
            f"/users/{user_id}/reset-password",
            json={"type": "password", "temporary": False, "value": password},
        )

    def _drop_required_action(self, user: Dict[str, Any], action: str) -> None:
        actions = user.get("requiredActions") or []
        if action in actions:
            self.client.put(f"/users/{user['id']}", json={
                "requiredActions": [a for a in actions if a != action],
            })

    @staticmethod
    def _is_not_set_up(exc: KeycloakAPIError) -> bool:
        return exc.error == "invalid_grant" and ACCOUNT_NOT_SET_UP in exc.error_description.lower()

    def _challenge_for(self, user: Dict[str, Any], email: str) -> Challenge:
        actions = user.get("requiredActions") or []
        if UPDATE_PASSWORD in actions:
            return Challenge(NEW_PASSWORD_REQUIRED, self._issue_session_code(email))
        if VERIFY_EMAIL in actions:
            raise IdentityProviderError(ProviderErrorKind.USER_NOT_CONFIRMED, "email not verified")
        raise IdentityProviderError(ProviderErrorKind.NOT_AUTHORIZED, f"pending actions: {actions}")

    def _issue_session_code(self, email: str) -> str:
        now = int(time.time())
        return jwt.encode(
            {
                "sub": email.lower(),
                "challenge": NEW_PASSWORD_REQUIRED,
                "iat": now,
                "exp": now + self.challenge_ttl_seconds,
                "jti": secrets.token_hex(8),
            },
            self.challenge_signing_key,
            algorithm="HS256",
        )

    def _verify_session_code(self, email: str, session_code: str) -> None:
        try:
            claims = jwt.decode(session_code, self.challenge_signing_key, algorithms=["HS256"])
        except ExpiredSignatureError:
            raise IdentityProviderError(ProviderErrorKind.EXPIRED_CODE, "session code expired")
        except InvalidTokenError as exc:
            raise IdentityProviderError(ProviderErrorKind.CODE_MISMATCH, f"session code rejected: {exc}")
        if claims.get("sub") != email.lower() or claims.get("challenge") != NEW_PASSWORD_REQUIRED:
            raise IdentityProviderError(ProviderErrorKind.CODE_MISMATCH, "session code issued for another account")

    def _reset_digest(self, email: str, code: str) -> str:
        message = f"{email.lower()}:{code}".encode("utf-8")
        return hmac.new(self.challenge_signing_key.encode("utf-8"), message, hashlib.sha256).hexdigest()

    @staticmethod
    def _token_set(payload: Dict[str, Any], fallback_refresh: Optional[str] = None) -> TokenSet:
        return TokenSet(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or fallback_refresh,
            expires_in=payload.get("expires_in"),
        )

    @staticmethod
    def _token_subject(access_token: str) -> Optional[str]:
        # Signature was checked by the provider that just issued the token.
        try:
            claims = jwt.decode(access_token, options={"verify_signature": False})
        except InvalidTokenError:
            return None
        return claims.get("sub")


def _first(values) -> Optional[str]:
    if isinstance(values, (list, tuple)):
        return values[0] if values else None
    return values
