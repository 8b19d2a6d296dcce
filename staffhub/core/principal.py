"""The authenticated caller, threaded explicitly through every use case."""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from staffhub.core.errors import NOT_AUTHORIZED_MESSAGE, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Identity resolved from a validated bearer token.

    Attributes:
        subject_id: Identity-provider subject (``sub``)
        email: Lowercased email claim
        access_token: The raw bearer token, needed for self-service calls
        claims: Remaining token attributes
    """
    subject_id: str
    email: str
    access_token: str
    claims: Dict[str, Any] = field(default_factory=dict)


def resolve_actor(directory, principal: Optional[Principal]):
    """Map a principal to the Admin record it acts as.

    Employees and principals without a local admin record are never actors.

    Raises:
        UnauthorizedError: If the caller is not an active admin.
    """
    if principal is None:
        raise UnauthorizedError(NOT_AUTHORIZED_MESSAGE)
    admin = directory.find_admin_by_email(principal.email)
    if admin is None:
        logger.warning("No admin record for caller %s", principal.email)
        raise UnauthorizedError(NOT_AUTHORIZED_MESSAGE)
    return admin
