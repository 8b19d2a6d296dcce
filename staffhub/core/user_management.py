"""Listing, viewing, archiving and soft-deleting directory users."""
from __future__ import annotations
import logging
from typing import Optional

from staffhub.core.errors import NotFoundError, ValidationError
from staffhub.core.rbac import (
    ADMIN_ROLES,
    Action,
    Tier,
    authorize,
    authorize_hierarchical,
    parse_tier,
)
from staffhub.core.validators import is_blank, is_text
from staffhub.models import Employee, db

logger = logging.getLogger(__name__)

ARCHIVE_ACTIONS = {"true": False, "archive": False, "false": True, "unarchive": True}


def page_params(page, per_page, default_per_page: int) -> tuple[int, int]:
    """Coerce paging query values; anything below 1 falls back to the default."""
    def _to_int(value, fallback):
        try:
            return int(value)
        except (TypeError, ValueError):
            return fallback

    page = _to_int(page, 1)
    per_page = _to_int(per_page, default_per_page)
    return max(page, 1), per_page if per_page >= 1 else default_per_page


class UserManagementService:
    def __init__(self, gateway, directory, session=None):
        self.gateway = gateway
        self.directory = directory
        self.session = session or db.session

    def _require_user(self, user_id: Optional[str], kind: Optional[type] = None):
        if not is_text(user_id):
            raise ValidationError("User ID is required")
        user = self.directory.find_by_id(user_id, kind)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def list_users(self, actor, user_type: Optional[str], page: int, per_page: int) -> dict:
        """One page of active users of ``user_type``.

        Only tiers strictly junior to the actor may be listed.
        """
        authorize(actor, ADMIN_ROLES)
        if is_blank(user_type):
            raise ValidationError("User type is required")
        tier = parse_tier(user_type)
        authorize_hierarchical(actor, tier, Action.LIST)

        if tier is Tier.EMPLOYEE:
            statement = self.directory.list_employees(active=True)
        else:
            statement = self.directory.list_admins(tier)
        return self.directory.paginate(statement, page, per_page)

    def list_archived(self, actor, page: int, per_page: int) -> dict:
        authorize(actor, ADMIN_ROLES)
        return self.directory.paginate(self.directory.list_employees(active=False), page, per_page)

    def get_user(self, actor, user_id: Optional[str]):
        authorize(actor, ADMIN_ROLES)
        user = self._require_user(user_id)
        authorize_hierarchical(actor, user.tier, Action.VIEW)
        return user

    def toggle_archive_state(self, actor, user_id: Optional[str], action_type) -> tuple[Employee, str]:
        """Archive or unarchive an employee.

        Returns:
            ``(employee, message)``
        """
        authorize(actor, ADMIN_ROLES)
        employee = self._require_user(user_id, Employee)
        if action_type is None or (isinstance(action_type, str) and not action_type.strip()):
            raise ValidationError("Action type is required")
        action = str(action_type).strip().lower()
        if action not in ARCHIVE_ACTIONS:
            raise ValidationError("Invalid action. Use 'true' or 'false' for the 'action_type' parameter.")
        authorize_hierarchical(actor, employee.tier, Action.ARCHIVE)

        active = ARCHIVE_ACTIONS[action]
        self.directory.update(employee, is_active=active)
        self.session.commit()
        message = "User unarchived successfully" if active else "User archived successfully"
        logger.info("%s: %s by %s", message, employee.id, actor.email)
        return employee, message

    def delete_user(self, actor, user_id: Optional[str]) -> str:
        """Soft-delete locally and delete at the provider, as one unit.

        Already-deleted users are not found.
        """
        authorize(actor, ADMIN_ROLES)
        user = self._require_user(user_id)
        authorize_hierarchical(actor, user.tier, Action.DELETE)

        original_email = user.email
        try:
            self.directory.soft_delete(user)
            self.gateway.delete_user(original_email)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error("Deleting user %s failed, local changes rolled back", user_id)
            raise
        logger.info("%s deleted user %s", actor.email, user_id)
        return "User deleted successfully"

    def profile(self, principal):
        """The caller's own directory record."""
        user = self.directory.find_by_email(principal.email)
        if user is None:
            raise NotFoundError("User not found")
        return user
