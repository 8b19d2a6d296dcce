"""Role hierarchy and authorization decisions.

The hierarchy is a total order, most senior first::

    super_admin > director > manager > employee

An actor may act on a target only when the actor's tier is strictly senior to
the target's tier. Employees are never actors. Nothing is senior to
``super_admin``, so a super admin can never be the target of an action.

All functions here are pure: they take the acting admin (anything with
``tier``, ``branch_id``, ``area_id`` and ``email`` attributes) and raise
``UnauthorizedError`` / ``ScopeViolationError`` / ``ValidationError`` on
denial. They never touch the database or the identity provider.
"""
from __future__ import annotations
import enum
import logging
from typing import Iterable, Optional, Protocol

from staffhub.core.errors import (
    NOT_AUTHORIZED_MESSAGE,
    ScopeViolationError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class Tier(str, enum.Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    DIRECTOR = "director"
    SUPER_ADMIN = "super_admin"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def is_admin(self) -> bool:
        return self is not Tier.EMPLOYEE

    def outranks(self, other: "Tier") -> bool:
        """True when this tier is strictly senior to ``other``."""
        return self.rank > other.rank


_RANK = {
    Tier.EMPLOYEE: 0,
    Tier.MANAGER: 1,
    Tier.DIRECTOR: 2,
    Tier.SUPER_ADMIN: 3,
}

# Tiers that may hold an admin record.
ADMIN_TIERS = (Tier.MANAGER, Tier.DIRECTOR, Tier.SUPER_ADMIN)

# Tiers accepted as a ``user_type`` when registering through the API.
REGISTRABLE_TIERS = (Tier.EMPLOYEE, Tier.MANAGER, Tier.DIRECTOR)

# Coarse gate shared by every admin-only endpoint.
ADMIN_ROLES = ADMIN_TIERS


class Action(str, enum.Enum):
    LIST = "list"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ARCHIVE = "archive"
    RESET_PASSWORD = "reset_password"


# Actions that can never target a super admin, whatever the actor's tier.
DESTRUCTIVE_ACTIONS = frozenset({Action.DELETE, Action.RESET_PASSWORD})

_TARGET_NOUNS = {
    Tier.EMPLOYEE: "an employee",
    Tier.MANAGER: "a manager",
    Tier.DIRECTOR: "a director",
    Tier.SUPER_ADMIN: "a super admin",
}


class Actor(Protocol):
    email: str
    branch_id: Optional[str]
    area_id: Optional[str]

    @property
    def tier(self) -> Tier: ...


def parse_tier(value, allowed: Iterable[Tier] = tuple(Tier), field: str = "user type") -> Tier:
    """Parse a user-supplied tier name.

    Raises:
        ValidationError: If the value is blank or not one of ``allowed``.
    """
    allowed = tuple(allowed)
    names = ", ".join(f"'{tier.value}'" for tier in allowed)
    if value is None or not str(value).strip():
        raise ValidationError(f"The {field} is required. Please provide one of: {names}.")
    try:
        tier = Tier(str(value).strip().lower())
    except ValueError:
        tier = None
    if tier not in allowed:
        raise ValidationError(f"The {field} you provided is invalid. Please provide a valid {field}: {names}.")
    return tier


def authorize(actor: Optional[Actor], required_roles: Iterable[Tier]) -> Tier:
    """Coarse gate: the actor's tier must be one of ``required_roles``.

    Returns:
        The actor's tier.

    Raises:
        UnauthorizedError: If there is no admin actor or its tier is not allowed.
    """
    required = set(required_roles)
    tier = getattr(actor, "tier", None)
    if actor is None or tier is None or not tier.is_admin or tier not in required:
        logger.warning(
            "Unauthorized access by user: %s (tier=%s, required=%s)",
            getattr(actor, "email", "<unknown>"),
            getattr(tier, "value", None),
            sorted(role.value for role in required),
        )
        raise UnauthorizedError(NOT_AUTHORIZED_MESSAGE)
    return tier


def can_act_on(actor_tier: Tier, target_tier: Tier, action: Action) -> bool:
    """Decision table behind :func:`authorize_hierarchical`."""
    if not actor_tier.is_admin:
        return False
    if target_tier is Tier.SUPER_ADMIN and action in DESTRUCTIVE_ACTIONS:
        return False
    return actor_tier.outranks(target_tier)


def authorize_hierarchical(actor: Optional[Actor], target_tier: Tier, action: Action) -> None:
    """Allow only when the actor is strictly senior to ``target_tier``.

    Raises:
        UnauthorizedError: On any same-tier or upward action, for any action
            aimed at a super admin, and when the actor is not an admin.
    """
    actor_tier = getattr(actor, "tier", None)
    if actor is None or actor_tier is None or not can_act_on(actor_tier, target_tier, action):
        logger.warning(
            "%s tried to %s %s",
            getattr(actor, "email", "<unknown>"),
            action.value,
            _TARGET_NOUNS[target_tier],
        )
        raise UnauthorizedError(_denial_message(target_tier, action))


def _denial_message(target_tier: Tier, action: Action) -> str:
    noun = _TARGET_NOUNS[target_tier]
    if action is Action.RESET_PASSWORD:
        return f"You are not authorized to reset the password of {noun}"
    if action is Action.CREATE:
        return f"You are not authorized to register {noun}"
    return NOT_AUTHORIZED_MESSAGE


def authorize_placement(actor: Actor, branch_id: Optional[str], area_id: Optional[str]) -> None:
    """Restrict directors and managers to their own branch, managers to their own area.

    Super admins are not placement-scoped.

    Raises:
        ScopeViolationError: If the requested placement is outside the actor's own.
    """
    tier = actor.tier
    if tier in (Tier.DIRECTOR, Tier.MANAGER):
        if not branch_id or str(actor.branch_id) != str(branch_id):
            logger.warning("%s tried to assign a user to branch %s", actor.email, branch_id)
            raise ScopeViolationError("You are not authorized to assign users to the specified branch.")
    if tier is Tier.MANAGER and area_id:
        if str(actor.area_id) != str(area_id):
            logger.warning("%s tried to assign a user to area %s", actor.email, area_id)
            raise ScopeViolationError("You are not authorized to assign users to the specified area.")


def listable_tiers(actor_tier: Tier) -> list[Tier]:
    """Tiers whose users the given tier may list."""
    return [tier for tier in Tier if can_act_on(actor_tier, tier, Action.LIST)]
