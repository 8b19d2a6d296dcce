"""User registration.

Registration is checked in full before anything is written: the actor's tier,
the payload, email uniqueness, the branch/area placement and the actor's own
placement scope. The local record is then created, the employee QR asset is
produced, and the account is registered with the identity provider. Any
failure after the first write rolls the whole session back, so no local-only
account survives a failed provider registration.
"""
from __future__ import annotations
import logging
import secrets
import string
import uuid
from typing import Mapping, Optional

from staffhub.core.assets import PNG_MIME_TYPE, USER_BUCKET, render_qr_png
from staffhub.core.errors import ConflictError, UnexpectedError, ValidationError
from staffhub.core.rbac import (
    ADMIN_ROLES,
    REGISTRABLE_TIERS,
    Action,
    Tier,
    authorize,
    authorize_hierarchical,
    authorize_placement,
    parse_tier,
)
from staffhub.core.validators import is_blank, optional_text, parse_date, require_fields, validate_email
from staffhub.models import Area, Branch, db

logger = logging.getLogger(__name__)

SHIFT_CODE_LENGTH = 6
SHIFT_CODE_ATTEMPTS = 10
TEMP_PASSWORD_LENGTH = 16

EMAIL_TAKEN_MESSAGE = "An account already exists with the email provided. Please use a different email address."
USER_TYPE_REQUIRED_MESSAGE = (
    "User type is required. Please specify if you're registering an 'employee', 'manager', or 'director'."
)

BASE_FIELDS = ("first_name", "email", "telephone")

REQUIRED_FIELDS = {
    Tier.EMPLOYEE: BASE_FIELDS + ("contract_start_date", "contract_end_date", "branch_id", "area_id"),
    Tier.MANAGER: BASE_FIELDS + ("branch_id", "area_id"),
    Tier.DIRECTOR: BASE_FIELDS + ("branch_id",),
}


def generate_temporary_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    """Random password with at least one character from each class."""
    alphabet = string.ascii_letters + string.digits
    body = [secrets.choice(alphabet) for _ in range(length - 4)]
    body += [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice("!@#%^*-_"),
    ]
    secrets.SystemRandom().shuffle(body)
    return "".join(body)


def generate_shift_code(directory, attempts: int = SHIFT_CODE_ATTEMPTS) -> str:
    for _ in range(attempts):
        code = uuid.uuid4().hex[:SHIFT_CODE_LENGTH]
        if not directory.shift_code_exists(code):
            return code
    logger.error("Unable to generate unique shift code after %d attempts", attempts)
    raise UnexpectedError()


class ProvisioningService:
    def __init__(self, gateway, directory, assets, qr_code_suffix: str = "", session=None):
        self.gateway = gateway
        self.directory = directory
        self.assets = assets
        self.qr_code_suffix = qr_code_suffix
        self.session = session or db.session

    def register_user(self, actor, payload: Mapping):
        """Create an employee, manager or director on behalf of ``actor``.

        Returns:
            The committed Employee or Admin record.
        """
        authorize(actor, ADMIN_ROLES)

        if is_blank(payload.get("user_type")):
            raise ValidationError(USER_TYPE_REQUIRED_MESSAGE)
        tier = parse_tier(payload.get("user_type"), REGISTRABLE_TIERS)
        authorize_hierarchical(actor, tier, Action.CREATE)

        require_fields(payload, REQUIRED_FIELDS[tier])
        email = validate_email(payload.get("email"))

        attrs = {
            "first_name": optional_text(payload["first_name"], "first name"),
            "last_name": optional_text(payload.get("last_name"), "last name"),
            "email": email,
            "telephone": optional_text(payload["telephone"], "telephone"),
        }
        if tier is Tier.EMPLOYEE:
            attrs.update(
                contract_code=optional_text(payload.get("contract_code"), "contract code"),
                tax_code=optional_text(payload.get("tax_code"), "tax code"),
                date_of_birth=parse_date(payload.get("date_of_birth"), "date of birth"),
                contract_start_date=parse_date(payload.get("contract_start_date"), "contract start date"),
                contract_end_date=parse_date(payload.get("contract_end_date"), "contract end date"),
            )

        branch_id = optional_text(payload.get("branch_id"), "branch id")
        area_id = optional_text(payload.get("area_id"), "area id")
        self._check_placement(branch_id, area_id)
        authorize_placement(actor, branch_id, area_id)

        # Uniqueness is only reported to callers allowed to place this user.
        if self.directory.email_taken(email):
            logger.warning("Registration attempted with existing email %s", email)
            raise ConflictError(EMAIL_TAKEN_MESSAGE)

        attrs["branch_id"] = branch_id
        if tier in (Tier.EMPLOYEE, Tier.MANAGER):
            attrs["area_id"] = area_id

        temp_password = generate_temporary_password()
        try:
            if tier is Tier.EMPLOYEE:
                record = self._create_employee(attrs)
            else:
                record = self.directory.create_admin(tier, **attrs)
            self.gateway.register(email, temp_password)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error("Registration of %s %s failed, local changes rolled back", tier.value, email)
            raise

        logger.info("%s registered %s %s", actor.email, tier.value, email)
        return record

    def _check_placement(self, branch_id: Optional[str], area_id: Optional[str]) -> None:
        branch = None
        if branch_id:
            branch = self.session.get(Branch, branch_id)
            if branch is None:
                raise ValidationError("The branch does not exist. Please provide a valid branch id.")
        if area_id:
            area = self.session.get(Area, area_id)
            if area is None:
                raise ValidationError("The area does not exist. Please provide a valid area id.")
            if branch is None or area not in branch.areas:
                raise ValidationError("The area does not belong to the specified branch.")

    def _create_employee(self, attrs: dict):
        employee = self.directory.create_employee(**attrs)

        shift_code = generate_shift_code(self.directory)
        payload = f"{shift_code}{self.qr_code_suffix}"
        file_name = f"{payload}.png"
        self.assets.upload(USER_BUCKET, render_qr_png(payload), file_name, PNG_MIME_TYPE)
        logger.info("QR code uploaded for shift code %s", shift_code)

        return self.directory.update(
            employee,
            shift_code=shift_code,
            qr_code_url=self.assets.public_url(file_name),
        )
