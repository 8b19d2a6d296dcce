"""Organization structure: organizations, branches, areas and job roles.

Reads are open to any admin, writes to super admins only. A parent with
dependent children cannot be deleted; the caller has to detach or delete the
children first.
"""
from __future__ import annotations
import logging
from typing import Iterable, Mapping, Optional

from sqlalchemy import select, update

from staffhub.core.directory import paginate
from staffhub.core.errors import ConflictError, NotFoundError, ValidationError
from staffhub.core.rbac import ADMIN_ROLES, Tier, authorize
from staffhub.core.validators import is_blank
from staffhub.models import Admin, Area, Branch, Employee, Organization, Role, db

logger = logging.getLogger(__name__)

WRITE_ROLES = (Tier.SUPER_ADMIN,)


class StructureService:
    def __init__(self, session=None):
        self.session = session or db.session

    # Shared helpers

    def _get(self, model, entity_id: Optional[str], label: str):
        if is_blank(entity_id):
            raise ValidationError(f"{label} ID is required")
        entity = self.session.get(model, entity_id)
        if entity is None:
            logger.error("%s not found with ID: %s", label, entity_id)
            raise NotFoundError(f"{label} not found")
        return entity

    def _list(self, actor, model, page: int, per_page: int) -> dict:
        authorize(actor, ADMIN_ROLES)
        return paginate(self.session, select(model).order_by(model.created_at.desc()), page, per_page)

    def _name_taken(self, model, name: str, exclude_id: Optional[str] = None, **scope) -> bool:
        statement = select(model.id).where(model.name == name)
        for column, value in scope.items():
            statement = statement.where(getattr(model, column) == value)
        if exclude_id:
            statement = statement.where(model.id != exclude_id)
        return self.session.execute(statement.limit(1)).first() is not None

    def _has_staff(self, column: str, entity_id: str) -> bool:
        """True when a live employee or admin is placed in the branch or area."""
        for model in (Employee, Admin):
            statement = select(model.id).where(getattr(model, column) == entity_id, model.is_deleted.is_(False))
            if self.session.execute(statement.limit(1)).first() is not None:
                return True
        return False

    def _release_deleted_staff(self, column: str, entity_id: str) -> None:
        # Soft-deleted rows still reference the parent; detach them before the delete.
        for model in (Employee, Admin):
            self.session.execute(
                update(model).where(getattr(model, column) == entity_id, model.is_deleted.is_(True)).values({column: None})
            )

    def _resolve_areas(self, area_ids: Optional[Iterable[str]]) -> Optional[list]:
        if area_ids is None:
            return None
        if isinstance(area_ids, str) or not isinstance(area_ids, Iterable):
            raise ValidationError("areas_ids must be a list of area ids")
        areas = []
        for area_id in area_ids:
            area = self.session.get(Area, area_id)
            if area is None:
                raise NotFoundError(f"Area with id {area_id} not found")
            areas.append(area)
        return areas

    def _delete(self, entity, label: str) -> str:
        name = entity.name
        self.session.delete(entity)
        self.session.commit()
        logger.info("%s %s deleted successfully", label, entity.id)
        return f"{label} {name} deleted successfully"

    # Organizations

    def list_organizations(self, actor, page: int, per_page: int) -> dict:
        return self._list(actor, Organization, page, per_page)

    def get_organization(self, actor, organization_id: Optional[str]) -> Organization:
        authorize(actor, ADMIN_ROLES)
        return self._get(Organization, organization_id, "Organization")

    def create_organization(self, actor, payload: Mapping) -> Organization:
        authorize(actor, WRITE_ROLES)
        name = payload.get("name")
        if is_blank(name):
            raise ValidationError("Name is required")
        if self._name_taken(Organization, name):
            raise ConflictError("Organization already exists with the name")

        organization = Organization(name=name, address=payload.get("address"))
        self.session.add(organization)
        self.session.commit()
        logger.info("Organization created successfully")
        return organization

    def update_organization(self, actor, organization_id: Optional[str], payload: Mapping) -> Organization:
        authorize(actor, WRITE_ROLES)
        name = payload.get("name")
        if is_blank(organization_id) or is_blank(name):
            raise ValidationError("Organization ID and name are required")
        organization = self._get(Organization, organization_id, "Organization")
        if self._name_taken(Organization, name, exclude_id=organization.id):
            raise ConflictError("An organization with this name already exists")

        organization.name = name
        organization.address = payload.get("address")
        self.session.commit()
        logger.info("Organization updated successfully")
        return organization

    def delete_organization(self, actor, organization_id: Optional[str]) -> str:
        authorize(actor, WRITE_ROLES)
        organization = self._get(Organization, organization_id, "Organization")
        if organization.branches:
            raise ConflictError("Organization has branches, delete branches and then try again")
        return self._delete(organization, "Organization")

    # Branches

    def list_branches(self, actor, page: int, per_page: int) -> dict:
        return self._list(actor, Branch, page, per_page)

    def get_branch(self, actor, branch_id: Optional[str]) -> Branch:
        authorize(actor, ADMIN_ROLES)
        return self._get(Branch, branch_id, "Branch")

    def create_branch(self, actor, payload: Mapping) -> Branch:
        authorize(actor, WRITE_ROLES)
        name = payload.get("name")
        organization_id = payload.get("organization_id")
        if is_blank(name):
            raise ValidationError("Branch name is required")
        if is_blank(organization_id):
            raise ValidationError("Organization ID is required")
        self._get(Organization, organization_id, "Organization")
        areas = self._resolve_areas(payload.get("areas_ids"))
        if self._name_taken(Branch, name, organization_id=organization_id):
            raise ConflictError("Branch already exists with the name")

        branch = Branch(name=name, address=payload.get("address"), organization_id=organization_id)
        if areas:
            branch.areas.extend(areas)
        self.session.add(branch)
        self.session.commit()
        logger.info("Branch created successfully")
        return branch

    def update_branch(self, actor, branch_id: Optional[str], payload: Mapping) -> Branch:
        """Rename a branch; a supplied ``areas_ids`` list replaces its areas."""
        authorize(actor, WRITE_ROLES)
        name = payload.get("name")
        if is_blank(branch_id):
            raise ValidationError("Branch ID is required")
        if is_blank(name):
            raise ValidationError("Branch name is required")
        areas = self._resolve_areas(payload.get("areas_ids"))
        branch = self._get(Branch, branch_id, "Branch")
        if self._name_taken(Branch, name, exclude_id=branch.id, organization_id=branch.organization_id):
            raise ConflictError("Branch already exists with the name")

        branch.name = name
        branch.address = payload.get("address")
        if areas is not None:
            branch.areas = areas
        self.session.commit()
        logger.info("Branch updated successfully")
        return branch

    def delete_branch(self, actor, branch_id: Optional[str]) -> str:
        authorize(actor, WRITE_ROLES)
        branch = self._get(Branch, branch_id, "Branch")
        if branch.areas:
            raise ConflictError("Branch has areas, delete areas and then try again")
        if self._has_staff("branch_id", branch.id):
            raise ConflictError("Branch has users assigned, reassign or delete them and then try again")
        self._release_deleted_staff("branch_id", branch.id)
        return self._delete(branch, "Branch")

    # Areas

    def list_areas(self, actor, page: int, per_page: int) -> dict:
        return self._list(actor, Area, page, per_page)

    def get_area(self, actor, area_id: Optional[str]) -> Area:
        authorize(actor, ADMIN_ROLES)
        return self._get(Area, area_id, "Area")

    def _check_area_fields(self, payload: Mapping) -> None:
        if is_blank(payload.get("name")):
            raise ValidationError("Name is required")
        if is_blank(payload.get("color")):
            raise ValidationError("Color is required")

    def create_area(self, actor, payload: Mapping) -> Area:
        authorize(actor, WRITE_ROLES)
        self._check_area_fields(payload)
        if self._name_taken(Area, payload["name"]):
            raise ConflictError("Area already exists with the name")

        area = Area(name=payload["name"], color=payload["color"])
        self.session.add(area)
        self.session.commit()
        logger.info("Area created successfully")
        return area

    def update_area(self, actor, area_id: Optional[str], payload: Mapping) -> Area:
        authorize(actor, WRITE_ROLES)
        if is_blank(area_id):
            raise ValidationError("Area ID is required")
        self._check_area_fields(payload)
        area = self._get(Area, area_id, "Area")
        if self._name_taken(Area, payload["name"], exclude_id=area.id):
            raise ConflictError("Area already exists with the name")

        area.name = payload["name"]
        area.color = payload["color"]
        self.session.commit()
        logger.info("Area updated successfully")
        return area

    def delete_area(self, actor, area_id: Optional[str]) -> str:
        authorize(actor, WRITE_ROLES)
        area = self._get(Area, area_id, "Area")
        if area.branches:
            raise ConflictError("Area has branches, detach from branches and then try again")
        if area.roles:
            raise ConflictError("Area has roles, delete roles and then try again")
        if self._has_staff("area_id", area.id):
            raise ConflictError("Area has users assigned, reassign or delete them and then try again")
        self._release_deleted_staff("area_id", area.id)
        return self._delete(area, "Area")

    # Job roles

    def list_roles(self, actor, page: int, per_page: int) -> dict:
        return self._list(actor, Role, page, per_page)

    def get_role(self, actor, role_id: Optional[str]) -> Role:
        authorize(actor, ADMIN_ROLES)
        return self._get(Role, role_id, "Role")

    def create_role(self, actor, payload: Mapping) -> Role:
        authorize(actor, WRITE_ROLES)
        name, symbol, area_id = payload.get("name"), payload.get("symbol"), payload.get("area_id")
        if is_blank(name):
            raise ValidationError("Name is required")
        if is_blank(symbol):
            raise ValidationError("Symbol is required")
        if is_blank(area_id):
            raise ValidationError("Area ID is required")
        self._get(Area, area_id, "Area")
        if self._name_taken(Role, name, area_id=area_id):
            raise ConflictError("Role already exists with the name")

        role = Role(name=name, symbol=symbol, area_id=area_id)
        self.session.add(role)
        self.session.commit()
        logger.info("Role created successfully")
        return role

    def update_role(self, actor, role_id: Optional[str], payload: Mapping) -> Role:
        authorize(actor, WRITE_ROLES)
        name, symbol = payload.get("name"), payload.get("symbol")
        if is_blank(role_id):
            raise ValidationError("Role ID is required")
        if is_blank(name):
            raise ValidationError("Name is required")
        if is_blank(symbol):
            raise ValidationError("Symbol is required")
        role = self._get(Role, role_id, "Role")
        if self._name_taken(Role, name, exclude_id=role.id, area_id=role.area_id):
            raise ConflictError("Role already exists with the name")

        role.name = name
        role.symbol = symbol
        self.session.commit()
        logger.info("Role updated successfully")
        return role

    def delete_role(self, actor, role_id: Optional[str]) -> str:
        authorize(actor, WRITE_ROLES)
        role = self._get(Role, role_id, "Role")
        return self._delete(role, "Role")
