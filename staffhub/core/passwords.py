"""Password Lifecycle Controller.

Each flow validates its fields and checks the local directory before any
identity-provider call, and returns the confirmation message to render.
"""
from __future__ import annotations
import logging
from typing import Optional

from staffhub.core.errors import NotFoundError, ValidationError
from staffhub.core.principal import Principal
from staffhub.core.rbac import ADMIN_ROLES, Action, Tier, authorize, authorize_hierarchical, parse_tier
from staffhub.core.validators import is_blank, is_text, validate_email

logger = logging.getLogger(__name__)


class PasswordService:
    def __init__(self, gateway, directory):
        self.gateway = gateway
        self.directory = directory

    def _require_user(self, email: str):
        user = self.directory.find_by_email(email)
        if user is None:
            logger.warning("Password operation for unknown user %s", email)
            raise NotFoundError("User not found")
        return user

    def set_new_password(self, email: Optional[str], new_password: Optional[str], session_code: Optional[str]) -> str:
        """Answer the first-login challenge, then mark the email verified."""
        if is_blank(email) or not is_text(new_password) or not is_text(session_code):
            raise ValidationError("Email, new password, and session code are required")
        email = validate_email(email)
        self._require_user(email)

        self.gateway.set_new_password(email, new_password, session_code)
        self.gateway.verify_email(email)
        return "Password set successfully"

    def request_reset(self, email: Optional[str]) -> str:
        if is_blank(email):
            raise ValidationError("Email is required")
        email = validate_email(email)
        self._require_user(email)

        self.gateway.request_password_reset(email)
        return f"Password reset code sent successfully to {email}"

    def confirm_reset(self, email: Optional[str], new_password: Optional[str], confirmation_code: Optional[str]) -> str:
        if is_blank(email) or not is_text(new_password) or not is_text(confirmation_code):
            raise ValidationError("Email, new password, and confirmation code are required")
        email = validate_email(email)
        self._require_user(email)

        self.gateway.confirm_password_reset(email, new_password, confirmation_code)
        return "Password reset successfully"

    def admin_reset(self, actor, email: Optional[str], new_password: Optional[str], user_type: Optional[str]) -> str:
        """Set another user's password on their behalf.

        The target tier comes from ``user_type`` as supplied, not from the
        record the email resolves to. The actor must be strictly senior to it.
        """
        authorize(actor, ADMIN_ROLES)
        if is_blank(user_type):
            raise ValidationError("User type is required")
        target_tier: Tier = parse_tier(user_type)
        if is_blank(email) or not is_text(new_password):
            raise ValidationError("Email and new password are required")
        email = validate_email(email)
        self._require_user(email)
        authorize_hierarchical(actor, target_tier, Action.RESET_PASSWORD)

        self.gateway.admin_set_password(email, new_password)
        self.gateway.verify_email(email)
        logger.info("%s reset the password of %s %s", actor.email, target_tier.value, email)
        return f"Password reset for {email} was successful"

    def change_password(self, principal: Principal, old_password: Optional[str], new_password: Optional[str]) -> str:
        """Self-service change; any authenticated caller may change their own password."""
        if not is_text(old_password) or not is_text(new_password):
            raise ValidationError("Old password and new password are required")

        self.gateway.change_password(principal.access_token, old_password, new_password)
        logger.info("Password changed for %s", principal.email)
        return "Password changed successfully"
