"""Pytest shared fixtures: in-memory identity gateway, asset store and seeded app."""
import itertools
from collections import Counter
from types import SimpleNamespace

import pytest
import requests

from staffhub.config.settings import AppConfig
from staffhub.core.assets import AssetUploadError
from staffhub.core.identity import AuthResult, Challenge, IdentityProviderError, NEW_PASSWORD_REQUIRED, TokenSet
from staffhub.core.identity.exceptions import ProviderErrorKind
from staffhub.core.rbac import Tier
from staffhub.flask_app import create_app
from staffhub.models import Admin, Area, Branch, Employee, Organization, db

PASSWORD = "Str0ng-Passw0rd!"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Fail loudly if a test reaches for the real network.

    Tests that exercise the HTTP clients install their own stubs on top.
    """
    def _blocked(method):
        def _call(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")
        return _call

    for method in ("get", "post", "put", "delete"):
        monkeypatch.setattr(requests, method, _blocked(method.upper()))


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────
class FakeGateway:
    """In-memory identity provider with per-method call counters."""

    def __init__(self):
        self.calls = Counter()
        self.accounts = {}
        self.access_tokens = {}
        self.refresh_tokens = {}
        self.reset_codes = {}
        self.failures = {}
        self._seq = itertools.count(1)

    # Test helpers

    def add_account(self, email, password=PASSWORD, pending=()):
        email = email.lower()
        self.accounts[email] = {
            "sub": f"sub-{next(self._seq)}",
            "password": password,
            "pending": set(pending),
            "verified": not pending,
        }
        return self.accounts[email]

    def issue_tokens(self, email):
        if email.lower() not in self.accounts:
            raise KeyError(email)
        n = next(self._seq)
        access, refresh = f"access-{n}", f"refresh-{n}"
        self.access_tokens[access] = email.lower()
        self.refresh_tokens[refresh] = email.lower()
        return TokenSet(access_token=access, refresh_token=refresh, expires_in=300)

    def headers_for(self, email):
        return {"Authorization": f"Bearer {self.issue_tokens(email).access_token}"}

    def fail(self, method, kind=ProviderErrorKind.UNEXPECTED):
        self.failures[method] = kind

    def _enter(self, method):
        self.calls[method] += 1
        kind = self.failures.get(method)
        if kind is not None:
            raise IdentityProviderError(kind, f"injected {method} failure")

    def _account(self, email):
        account = self.accounts.get(email.lower())
        if account is None:
            raise IdentityProviderError(ProviderErrorKind.USER_NOT_FOUND)
        return account

    def _token_owner(self, access_token):
        email = self.access_tokens.get(access_token)
        if email is None:
            raise IdentityProviderError(ProviderErrorKind.NOT_AUTHORIZED)
        return email

    # Gateway interface

    def register(self, email, temp_password):
        self._enter("register")
        if email.lower() in self.accounts:
            raise IdentityProviderError(ProviderErrorKind.USER_ALREADY_EXISTS)
        self.add_account(email, temp_password, pending={"UPDATE_PASSWORD"})

    def authenticate(self, email, password):
        self._enter("authenticate")
        account = self._account(email)
        if account["password"] != password:
            raise IdentityProviderError(ProviderErrorKind.NOT_AUTHORIZED)
        if "UPDATE_PASSWORD" in account["pending"]:
            return AuthResult(challenge=Challenge(NEW_PASSWORD_REQUIRED, f"session-{email.lower()}"))
        return AuthResult(tokens=self.issue_tokens(email))

    def refresh_token(self, refresh_token, subject_id):
        self._enter("refresh_token")
        email = self.refresh_tokens.get(refresh_token)
        if email is None or self.accounts[email]["sub"] != subject_id:
            raise IdentityProviderError(ProviderErrorKind.NOT_AUTHORIZED)
        tokens = self.issue_tokens(email)
        return AuthResult(tokens=TokenSet(tokens.access_token, refresh_token, tokens.expires_in))

    def revoke_token(self, access_token):
        self._enter("revoke_token")
        email = self._token_owner(access_token)
        for store in (self.access_tokens, self.refresh_tokens):
            for token in [t for t, owner in store.items() if owner == email]:
                del store[token]

    def get_user(self, access_token):
        self._enter("get_user")
        email = self._token_owner(access_token)
        sub = self.accounts[email]["sub"]
        return sub, {"sub": sub, "email": email}

    def set_new_password(self, email, new_password, session_code):
        self._enter("set_new_password")
        account = self._account(email)
        if session_code != f"session-{email.lower()}":
            raise IdentityProviderError(ProviderErrorKind.CODE_MISMATCH)
        account["password"] = new_password
        account["pending"].discard("UPDATE_PASSWORD")

    def verify_email(self, email):
        self._enter("verify_email")
        account = self._account(email)
        account["verified"] = True
        account["pending"].discard("VERIFY_EMAIL")

    def request_password_reset(self, email):
        self._enter("request_password_reset")
        self._account(email)
        self.reset_codes[email.lower()] = "123456"

    def confirm_password_reset(self, email, new_password, confirmation_code):
        self._enter("confirm_password_reset")
        account = self._account(email)
        if self.reset_codes.get(email.lower()) != confirmation_code:
            raise IdentityProviderError(ProviderErrorKind.CODE_MISMATCH)
        account["password"] = new_password
        del self.reset_codes[email.lower()]

    def admin_set_password(self, email, new_password):
        self._enter("admin_set_password")
        account = self._account(email)
        account["password"] = new_password
        account["pending"].discard("UPDATE_PASSWORD")

    def change_password(self, access_token, old_password, new_password):
        self._enter("change_password")
        account = self.accounts[self._token_owner(access_token)]
        if account["password"] != old_password:
            raise IdentityProviderError(ProviderErrorKind.NOT_AUTHORIZED)
        account["password"] = new_password

    def delete_user(self, email):
        self._enter("delete_user")
        self._account(email)
        del self.accounts[email.lower()]


class FakeAssetStore:
    def __init__(self, public_base="http://assets.test/user/"):
        self.public_base = public_base
        self.uploads = []
        self.fail = False

    def upload(self, bucket_kind, data, name, mime_type):
        if self.fail:
            raise AssetUploadError()
        self.uploads.append((bucket_kind, data, name, mime_type))

    def public_url(self, name):
        return f"{self.public_base}{name}"


def make_config(**overrides):
    base = dict(
        demo_mode=True,
        secret_key="test-secret",
        database_url="sqlite://",
        keycloak_url="http://keycloak.test",
        keycloak_realm="staffhub",
        keycloak_issuer="http://keycloak.test/realms/staffhub",
        jwt_validation_enabled=False,
        oidc_client_id="staffhub-api",
        oidc_client_secret="test-client-secret",
        keycloak_service_client_id="staffhub-admin",
        keycloak_service_client_secret="service-secret",
        asset_storage_url="http://assets.test",
        asset_public_url="http://assets.test/user/",
        qr_code_suffix="StaffHub",
        default_per_page=20,
    )
    base.update(overrides)
    return AppConfig(**base)


# ─────────────────────────────────────────────────────────────────────────────
# Flask App + Seed Data
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def assets():
    return FakeAssetStore()


@pytest.fixture()
def app(gateway, assets):
    flask_app = create_app(make_config(), gateway=gateway, assets=assets)
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def seed(app, gateway):
    """Organization with two branches, and one user of every tier.

    branch_a holds areas a1 and a2; branch_b holds area b1. The director,
    manager and employee are placed in branch_a (manager and employee in a1).
    """
    org = Organization(name="Acme")
    a1, a2, b1 = Area(name="Kitchen", color="red"), Area(name="Floor", color="blue"), Area(name="Bar", color="green")
    branch_a = Branch(name="North", organization=org, areas=[a1, a2])
    branch_b = Branch(name="South", organization=org, areas=[b1])
    db.session.add_all([org, a1, a2, b1, branch_a, branch_b])
    db.session.flush()

    super_admin = Admin(first_name="Sam", email="super@example.com", telephone="1", admin_type=Tier.SUPER_ADMIN)
    director = Admin(first_name="Dana", email="director@example.com", telephone="2",
                     admin_type=Tier.DIRECTOR, branch_id=branch_a.id)
    manager = Admin(first_name="Max", email="manager@example.com", telephone="3",
                    admin_type=Tier.MANAGER, branch_id=branch_a.id, area_id=a1.id)
    employee = Employee(first_name="Eve", email="employee@example.com", telephone="4",
                        branch_id=branch_a.id, area_id=a1.id, shift_code="abc123")
    db.session.add_all([super_admin, director, manager, employee])
    db.session.commit()

    for user in (super_admin, director, manager, employee):
        gateway.add_account(user.email)

    return SimpleNamespace(
        org=org, branch_a=branch_a, branch_b=branch_b, a1=a1, a2=a2, b1=b1,
        super_admin=super_admin, director=director, manager=manager, employee=employee,
    )
