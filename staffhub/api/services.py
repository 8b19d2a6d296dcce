"""Per-application service wiring shared by the blueprints."""
from __future__ import annotations
from dataclasses import dataclass

from flask import current_app

from staffhub.core.assets import HttpAssetStore
from staffhub.core.directory import UserDirectory
from staffhub.core.identity import IdentityGateway
from staffhub.core.passwords import PasswordService
from staffhub.core.provisioning import ProvisioningService
from staffhub.core.sessions import SessionManager
from staffhub.core.structure import StructureService
from staffhub.core.user_management import UserManagementService

EXTENSION_KEY = "staffhub"


@dataclass
class Services:
    gateway: object
    assets: object
    directory: UserDirectory
    sessions: SessionManager
    passwords: PasswordService
    provisioning: ProvisioningService
    users: UserManagementService
    structure: StructureService


def build_services(cfg, gateway=None, assets=None) -> Services:
    """Wire the use cases around one gateway and one asset store.

    ``gateway`` and ``assets`` default to the Keycloak gateway and the HTTP
    asset store built from ``cfg``.
    """
    gateway = gateway or IdentityGateway.from_config(cfg)
    assets = assets or HttpAssetStore.from_config(cfg)
    directory = UserDirectory()
    return Services(
        gateway=gateway,
        assets=assets,
        directory=directory,
        sessions=SessionManager(gateway, directory),
        passwords=PasswordService(gateway, directory),
        provisioning=ProvisioningService(gateway, directory, assets, cfg.qr_code_suffix),
        users=UserManagementService(gateway, directory),
        structure=StructureService(),
    )


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
