"""User Directory Store over SQLAlchemy.

Employees and admins are disjoint record kinds that share one email
namespace. Emails are stored lowercased and matched case-insensitively.
Soft-deleted rows never come back from a lookup.
"""
from __future__ import annotations
import logging
import math
from typing import Optional, Union

from sqlalchemy import func, select

from staffhub.core.rbac import Tier
from staffhub.core.validators import normalize_email
from staffhub.models import Admin, Employee, db

logger = logging.getLogger(__name__)

DirectoryUser = Union[Employee, Admin]

ANONYMIZED_FIRST_NAME = "Deleted"
ANONYMIZED_LAST_NAME = "User"
ANONYMIZED_TELEPHONE = "000000"


def anonymized_email(record_id: str) -> str:
    return f"deleted_user{record_id}@deleted.com"


class UserDirectory:
    """Lookup and persistence for Employee and Admin records.

    Writes are flushed, never committed: the calling use case owns the
    transaction and commits or rolls back as a unit.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    # Lookups

    def find_employee_by_email(self, email: str) -> Optional[Employee]:
        return self.session.execute(
            select(Employee).where(
                func.lower(Employee.email) == normalize_email(email),
                Employee.is_deleted.is_(False),
            )
        ).scalar_one_or_none()

    def find_admin_by_email(self, email: str) -> Optional[Admin]:
        return self.session.execute(
            select(Admin).where(
                func.lower(Admin.email) == normalize_email(email),
                Admin.is_deleted.is_(False),
            )
        ).scalar_one_or_none()

    def find_by_email(self, email: str) -> Optional[DirectoryUser]:
        """Resolve an email to its Employee or Admin record."""
        if not normalize_email(email):
            return None
        return self.find_employee_by_email(email) or self.find_admin_by_email(email)

    def find_by_id(self, record_id: str, kind: Optional[type] = None) -> Optional[DirectoryUser]:
        """Look a record up by id, in one kind or in both."""
        for model in ((kind,) if kind else (Employee, Admin)):
            record = self.session.get(model, record_id)
            if record is not None and not record.is_deleted:
                return record
        return None

    def email_taken(self, email: str) -> bool:
        """True when any record, deleted or not, already holds this email."""
        email = normalize_email(email)
        for model in (Employee, Admin):
            exists = self.session.execute(
                select(model.id).where(func.lower(model.email) == email).limit(1)
            ).first()
            if exists:
                return True
        return False

    def shift_code_exists(self, shift_code: str) -> bool:
        return self.session.execute(
            select(Employee.id).where(Employee.shift_code == shift_code).limit(1)
        ).first() is not None

    # Writes

    def create_employee(self, **attrs) -> Employee:
        employee = Employee(**attrs)
        self.session.add(employee)
        self.session.flush()
        logger.info("Created employee record %s", employee.id)
        return employee

    def create_admin(self, tier: Tier, **attrs) -> Admin:
        admin = Admin(admin_type=tier, **attrs)
        self.session.add(admin)
        self.session.flush()
        logger.info("Created %s record %s", tier.value, admin.id)
        return admin

    def update(self, record: DirectoryUser, **attrs) -> DirectoryUser:
        for key, value in attrs.items():
            setattr(record, key, value)
        self.session.flush()
        return record

    def soft_delete(self, record: DirectoryUser) -> DirectoryUser:
        """Mark deleted and scrub PII. The original email is freed for reuse."""
        record.is_deleted = True
        record.first_name = ANONYMIZED_FIRST_NAME
        record.last_name = ANONYMIZED_LAST_NAME
        record.telephone = ANONYMIZED_TELEPHONE
        record.email = anonymized_email(record.id)
        self.session.flush()
        logger.info("Soft-deleted %s record %s", record.tier.value, record.id)
        return record

    # Listings

    def list_employees(self, active: bool = True):
        return (
            select(Employee)
            .where(Employee.is_deleted.is_(False), Employee.is_active.is_(active))
            .order_by(Employee.created_at.desc())
        )

    def list_admins(self, tier: Tier):
        return (
            select(Admin)
            .where(Admin.is_deleted.is_(False), Admin.admin_type == tier)
            .order_by(Admin.created_at.desc())
        )

    def paginate(self, statement, page: int, per_page: int) -> dict:
        return paginate(self.session, statement, page, per_page)


def paginate(session, statement, page: int, per_page: int) -> dict:
    """Run a listing statement one page at a time.

    Returns:
        ``{"items": [...], "meta": {...}}`` with 1-based page numbers.
    """
    total = session.execute(
        select(func.count()).select_from(statement.order_by(None).subquery())
    ).scalar_one()
    items = session.execute(
        statement.limit(per_page).offset((page - 1) * per_page)
    ).scalars().all()
    total_pages = math.ceil(total / per_page) if total else 0
    return {
        "items": items,
        "meta": {
            "current_page": page,
            "total_pages": total_pages,
            "total_count": total,
            "next_page": page + 1 if page < total_pages else None,
            "prev_page": page - 1 if page > 1 else None,
        },
    }
