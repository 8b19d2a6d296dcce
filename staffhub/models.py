"""Flask-SQLAlchemy models for the organization hierarchy and the user directory."""
from __future__ import annotations
import datetime
import uuid

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import validates

from staffhub.core.rbac import Tier
from staffhub.core.validators import DATE_FORMAT, DATETIME_FORMAT

db = SQLAlchemy()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _fmt_date(value):
    return value.strftime(DATE_FORMAT) if value else None


def _fmt_datetime(value):
    return value.strftime(DATETIME_FORMAT) if value else None


class TimestampMixin:
    created_at = db.Column(db.DateTime, nullable=False, default=_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=_now, onupdate=_now)


areas_branches = db.Table(
    "areas_branches",
    db.Column("area_id", db.String(36), db.ForeignKey("areas.id"), primary_key=True),
    db.Column("branch_id", db.String(36), db.ForeignKey("branches.id"), primary_key=True),
)


class Organization(TimestampMixin, db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False, unique=True)
    address = db.Column(db.String(255))

    branches = db.relationship("Branch", back_populates="organization", lazy="select")

    def public_attributes(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "created_at": _fmt_datetime(self.created_at),
            "updated_at": _fmt_datetime(self.updated_at),
        }


class Branch(TimestampMixin, db.Model):
    __tablename__ = "branches"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(255))
    organization_id = db.Column(db.String(36), db.ForeignKey("organizations.id"), nullable=False, index=True)

    organization = db.relationship("Organization", back_populates="branches")
    areas = db.relationship("Area", secondary=areas_branches, back_populates="branches", lazy="select")

    def public_attributes(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "organization_id": self.organization_id,
            "area_ids": [area.id for area in self.areas],
            "created_at": _fmt_datetime(self.created_at),
            "updated_at": _fmt_datetime(self.updated_at),
        }


class Area(TimestampMixin, db.Model):
    __tablename__ = "areas"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False, unique=True)
    color = db.Column(db.String(32))

    branches = db.relationship("Branch", secondary=areas_branches, back_populates="areas", lazy="select")
    roles = db.relationship("Role", back_populates="area", lazy="select")

    def public_attributes(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": _fmt_datetime(self.created_at),
            "updated_at": _fmt_datetime(self.updated_at),
        }


class Role(TimestampMixin, db.Model):
    """Job role inside an area (not an authorization tier)."""
    __tablename__ = "roles"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    symbol = db.Column(db.String(32))
    area_id = db.Column(db.String(36), db.ForeignKey("areas.id"), nullable=False, index=True)

    area = db.relationship("Area", back_populates="roles")

    __table_args__ = (db.UniqueConstraint("name", "area_id", name="uq_roles_name_area"),)

    def public_attributes(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "area_id": self.area_id,
            "created_at": _fmt_datetime(self.created_at),
            "updated_at": _fmt_datetime(self.updated_at),
        }


class Employee(TimestampMixin, db.Model):
    __tablename__ = "employees"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128))
    email = db.Column(db.String(254), nullable=False, unique=True, index=True)
    telephone = db.Column(db.String(32))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), index=True)
    area_id = db.Column(db.String(36), db.ForeignKey("areas.id"), index=True)
    contract_code = db.Column(db.String(64))
    tax_code = db.Column(db.String(64))
    shift_code = db.Column(db.String(16), unique=True)
    date_of_birth = db.Column(db.Date)
    contract_start_date = db.Column(db.Date)
    contract_end_date = db.Column(db.Date)
    qr_code_url = db.Column(db.String(512))

    branch = db.relationship("Branch")
    area = db.relationship("Area")

    @validates("email")
    def _lowercase_email(self, key, value):
        return value.strip().lower() if value else value

    @property
    def tier(self) -> Tier:
        return Tier.EMPLOYEE

    def public_attributes(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "telephone": self.telephone,
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
            "qr_code_url": self.qr_code_url,
            "contract_code": self.contract_code,
            "tax_code": self.tax_code,
            "shift_code": self.shift_code,
            "branch_id": self.branch_id,
            "area_id": self.area_id,
            "date_of_birth": _fmt_date(self.date_of_birth),
            "contract_start_date": _fmt_date(self.contract_start_date),
            "contract_end_date": _fmt_date(self.contract_end_date),
            "created_at": _fmt_datetime(self.created_at),
            "updated_at": _fmt_datetime(self.updated_at),
        }


class Admin(TimestampMixin, db.Model):
    __tablename__ = "admins"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128))
    email = db.Column(db.String(254), nullable=False, unique=True, index=True)
    telephone = db.Column(db.String(32))
    admin_type = db.Column(
        db.Enum(Tier, name="admin_type", native_enum=False, values_callable=lambda tiers: [t.value for t in tiers]),
        nullable=False,
    )
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), index=True)
    area_id = db.Column(db.String(36), db.ForeignKey("areas.id"), index=True)

    branch = db.relationship("Branch")
    area = db.relationship("Area")

    @validates("email")
    def _lowercase_email(self, key, value):
        return value.strip().lower() if value else value

    @validates("admin_type")
    def _check_admin_type(self, key, value):
        tier = Tier(value)
        if not tier.is_admin:
            raise ValueError(f"{tier.value} is not an admin type")
        return tier

    @property
    def tier(self) -> Tier:
        return Tier(self.admin_type)

    def public_attributes(self) -> dict:
        tier = self.tier
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "telephone": self.telephone,
            "admin_type": tier.value,
            # Flag form kept for older API clients.
            "is_manager": tier is Tier.MANAGER,
            "is_director": tier is Tier.DIRECTOR,
            "is_super_admin": tier is Tier.SUPER_ADMIN,
            "is_deleted": self.is_deleted,
            "area": self.area.public_attributes() if self.area else None,
            "branch": self.branch.public_attributes() if self.branch else None,
            "created_at": _fmt_datetime(self.created_at),
            "updated_at": _fmt_datetime(self.updated_at),
        }
