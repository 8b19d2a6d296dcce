"""Session Manager: login, token refresh and logout.

Sessions are never stored locally. This module only brokers tokens issued by
the identity provider, after confirming the account exists in the local
directory.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from staffhub.core.errors import AccountNotFoundError, ValidationError
from staffhub.core.identity.gateway import AuthResult, Challenge, TokenSet
from staffhub.core.validators import is_blank, is_text, validate_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionResult:
    """Normalized outcome of a login or refresh.

    Exactly one of ``tokens`` and ``challenge`` is set.
    """
    tokens: Optional[TokenSet] = None
    challenge: Optional[Challenge] = None
    user: Optional[object] = None
    subject_id: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.tokens is not None and self.challenge is None

    def challenge_body(self) -> dict:
        return {
            "error": f"User needs to respond to challenge: {self.challenge.name}",
            "session_code": self.challenge.session_code,
            "challenge_name": self.challenge.name,
        }


class SessionManager:
    def __init__(self, gateway, directory):
        self.gateway = gateway
        self.directory = directory

    def login(self, email: Optional[str], password: Optional[str]) -> SessionResult:
        """Authenticate a locally provisioned account.

        The local lookup always happens first: an email without a local record
        fails with ``AccountNotFoundError`` and the provider is never called.
        """
        if is_blank(email) or not is_text(password):
            raise ValidationError("Email and password are required")
        email = validate_email(email, "Invalid email address")

        user = self.directory.find_by_email(email)
        if user is None:
            logger.warning("Login attempt for unknown account %s", email)
            raise AccountNotFoundError()

        result = self.gateway.authenticate(email, password)
        if result.challenge is not None:
            logger.info("Login for %s requires challenge %s", email, result.challenge.name)
            return SessionResult(challenge=result.challenge, user=user)

        subject_id, _ = self.gateway.get_user(result.tokens.access_token)
        logger.info("Logged in %s", email)
        return SessionResult(tokens=result.tokens, user=user, subject_id=subject_id)

    def refresh(self, refresh_token: str, subject_id: str) -> SessionResult:
        result: AuthResult = self.gateway.refresh_token(refresh_token, subject_id)
        if result.challenge is not None:
            return SessionResult(challenge=result.challenge, subject_id=subject_id)
        return SessionResult(tokens=result.tokens, subject_id=subject_id)

    def logout(self, access_token: str) -> None:
        self.gateway.revoke_token(access_token)
