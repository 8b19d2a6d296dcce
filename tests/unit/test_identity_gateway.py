"""Tests for the Keycloak-backed identity gateway.

``requests`` is replaced by a small in-memory realm that answers the token,
userinfo and Admin API endpoints the gateway uses.
"""
import itertools
import json
import re

import jwt
import pytest
import requests

from staffhub.core.identity import IdentityGateway, IdentityProviderError, KeycloakClient, NEW_PASSWORD_REQUIRED
from staffhub.core.identity.exceptions import KeycloakAPIError, ProviderErrorKind, translate_api_error
from staffhub.core.identity.gateway import RESET_DIGEST_ATTRIBUTE, RESET_EXPIRY_ATTRIBUTE

BASE_URL = "http://keycloak.test"
REALM = "staffhub"
TOKEN_URL = f"{BASE_URL}/realms/{REALM}/protocol/openid-connect/token"
USERINFO_URL = f"{BASE_URL}/realms/{REALM}/protocol/openid-connect/userinfo"
ADMIN_URL = f"{BASE_URL}/admin/realms/{REALM}"
SIGNING_KEY = "challenge-signing-key-for-tests-0123456789"
REALM_KEY = "realm-token-signing-key-for-tests-0123456789"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, url=""):
        self.status_code = status_code
        self._payload = payload
        self.url = url

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    @property
    def text(self):
        return "" if self._payload is None else json.dumps(self._payload)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeRealm:
    """Just enough of a Keycloak realm to drive the gateway."""

    def __init__(self):
        self.users = {}
        self.access_tokens = {}
        self.refresh_tokens = {}
        self.grants = []
        self._ids = itertools.count(1)

    def install(self, monkeypatch):
        monkeypatch.setattr(requests, "get", self.get)
        monkeypatch.setattr(requests, "post", self.post)
        monkeypatch.setattr(requests, "put", self.put)
        monkeypatch.setattr(requests, "delete", self.delete)

    def add_user(self, email, password, required_actions=()):
        user_id = f"kc-{next(self._ids)}"
        self.users[user_id] = {
            "id": user_id,
            "username": email.lower(),
            "email": email.lower(),
            "enabled": True,
            "emailVerified": not required_actions,
            "requiredActions": list(required_actions),
            "attributes": {},
            "password": password,
            "temporary": False,
        }
        return self.users[user_id]

    def by_email(self, email):
        return next((u for u in self.users.values() if u["email"] == email.lower()), None)

    def _issue(self, user_id):
        n = next(self._ids)
        access = jwt.encode({"sub": user_id, "jti": str(n)}, REALM_KEY, algorithm="HS256")
        refresh = f"refresh-{n}"
        self.access_tokens[access] = user_id
        self.refresh_tokens[refresh] = user_id
        return {"access_token": access, "refresh_token": refresh, "expires_in": 300}

    @staticmethod
    def _public(user):
        return {k: v for k, v in user.items() if k not in ("password", "temporary")}

    # HTTP verbs

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        if url == USERINFO_URL:
            token = (headers or {}).get("Authorization", "").split(" ", 1)[-1]
            user_id = self.access_tokens.get(token)
            if user_id is None:
                return FakeResponse(401, {"error": "invalid_token"}, url)
            user = self.users[user_id]
            return FakeResponse(200, {"sub": user_id, "email": user["email"],
                                      "preferred_username": user["username"]}, url)
        if url == f"{ADMIN_URL}/users":
            email = (params or {}).get("email", "").lower()
            return FakeResponse(200, [self._public(u) for u in self.users.values() if u["email"] == email], url)
        match = re.fullmatch(rf"{ADMIN_URL}/users/([^/]+)", url)
        if match and match.group(1) in self.users:
            return FakeResponse(200, self._public(self.users[match.group(1)]), url)
        return FakeResponse(404, {"error": "User not found"}, url)

    def post(self, url, data=None, json=None, headers=None, timeout=None, **kwargs):
        if url == TOKEN_URL:
            return self._token(data, url)
        if url == f"{ADMIN_URL}/users":
            if self.by_email(json["email"]):
                return FakeResponse(409, {"errorMessage": "User exists with same username"}, url)
            credential = json["credentials"][0]
            user = self.add_user(json["email"], credential["value"], json.get("requiredActions", ()))
            user["temporary"] = credential["temporary"]
            return FakeResponse(201, None, url)
        match = re.fullmatch(rf"{ADMIN_URL}/users/([^/]+)/logout", url)
        if match:
            user_id = match.group(1)
            for store in (self.access_tokens, self.refresh_tokens):
                for token in [t for t, owner in store.items() if owner == user_id]:
                    del store[token]
            return FakeResponse(204, None, url)
        return FakeResponse(404, {"error": "Not found"}, url)

    def put(self, url, json=None, headers=None, timeout=None, **kwargs):
        match = re.fullmatch(rf"{ADMIN_URL}/users/([^/]+)/reset-password", url)
        if match:
            if len(json["value"]) < 8:
                return FakeResponse(400, {"error": "invalidPasswordMinLengthMessage"}, url)
            user = self.users[match.group(1)]
            user["password"] = json["value"]
            user["temporary"] = json["temporary"]
            return FakeResponse(204, None, url)
        match = re.fullmatch(rf"{ADMIN_URL}/users/([^/]+)", url)
        if match and match.group(1) in self.users:
            self.users[match.group(1)].update(json)
            return FakeResponse(204, None, url)
        return FakeResponse(404, {"error": "User not found"}, url)

    def delete(self, url, headers=None, timeout=None, **kwargs):
        match = re.fullmatch(rf"{ADMIN_URL}/users/([^/]+)", url)
        if match and self.users.pop(match.group(1), None):
            return FakeResponse(204, None, url)
        return FakeResponse(404, {"error": "User not found"}, url)

    def _token(self, data, url):
        grant = data["grant_type"]
        self.grants.append(grant)
        if grant == "client_credentials":
            return FakeResponse(200, {"access_token": "service-token", "expires_in": 300}, url)
        if grant == "password":
            user = self.by_email(data["username"])
            if user is None or user["password"] != data["password"]:
                return FakeResponse(401, {"error": "invalid_grant", "error_description": "Invalid user credentials"}, url)
            if user["requiredActions"]:
                return FakeResponse(400, {"error": "invalid_grant",
                                          "error_description": "Account is not fully set up"}, url)
            return FakeResponse(200, self._issue(user["id"]), url)
        if grant == "refresh_token":
            user_id = self.refresh_tokens.get(data["refresh_token"])
            if user_id is None:
                return FakeResponse(400, {"error": "invalid_grant", "error_description": "Invalid refresh token"}, url)
            payload = self._issue(user_id)
            del payload["refresh_token"]
            return FakeResponse(200, payload, url)
        return FakeResponse(400, {"error": "unsupported_grant_type"}, url)


@pytest.fixture()
def realm(monkeypatch):
    fake = FakeRealm()
    fake.install(monkeypatch)
    return fake


@pytest.fixture()
def outbox():
    return {"codes": [], "invites": []}


def build_gateway(outbox, **overrides):
    client = KeycloakClient(BASE_URL, REALM)
    client.use_service_account("staffhub-admin", "service-secret")
    options = dict(
        client=client,
        oidc_client_id="staffhub-api",
        oidc_client_secret="client-secret",
        challenge_signing_key=SIGNING_KEY,
        code_sender=lambda email, code: outbox["codes"].append((email, code)),
        invite_sender=lambda email, password: outbox["invites"].append((email, password)),
    )
    options.update(overrides)
    return IdentityGateway(**options)


@pytest.fixture()
def gateway(realm, outbox):
    return build_gateway(outbox)


def test_register_creates_account_pending_password_update(gateway, realm, outbox):
    gateway.register("New.Hire@example.com", "Temp-Passw0rd")

    user = realm.by_email("new.hire@example.com")
    assert user["requiredActions"] == ["UPDATE_PASSWORD"]
    assert user["temporary"] is True
    assert outbox["invites"] == [("New.Hire@example.com", "Temp-Passw0rd")]


def test_register_duplicate_is_conflict(gateway, realm):
    realm.add_user("dup@example.com", "whatever-123")
    with pytest.raises(IdentityProviderError) as exc:
        gateway.register("dup@example.com", "Temp-Passw0rd")
    assert exc.value.kind is ProviderErrorKind.USER_ALREADY_EXISTS
    assert exc.value.status == 409


def test_service_token_is_reused_across_admin_calls(gateway, realm):
    realm.add_user("a@example.com", "password-1")
    gateway.verify_email("a@example.com")
    gateway.admin_set_password("a@example.com", "password-2")
    assert realm.grants.count("client_credentials") == 1


class TestAuthenticate:
    def test_returns_tokens(self, gateway, realm):
        realm.add_user("alice@example.com", "correct-horse")
        result = gateway.authenticate("alice@example.com", "correct-horse")

        assert result.challenge is None
        assert result.tokens.access_token in realm.access_tokens
        assert result.tokens.refresh_token.startswith("refresh-")

    def test_wrong_password(self, gateway, realm):
        realm.add_user("alice@example.com", "correct-horse")
        with pytest.raises(IdentityProviderError) as exc:
            gateway.authenticate("alice@example.com", "wrong")
        assert exc.value.kind is ProviderErrorKind.NOT_AUTHORIZED
        assert exc.value.status == 401
        assert exc.value.message == "Invalid email or password"

    def test_pending_password_update_is_a_challenge(self, gateway, realm):
        realm.add_user("bob@example.com", "temp-password", ["UPDATE_PASSWORD"])
        result = gateway.authenticate("bob@example.com", "temp-password")

        assert result.tokens is None
        assert result.challenge.name == NEW_PASSWORD_REQUIRED
        claims = jwt.decode(result.challenge.session_code, SIGNING_KEY, algorithms=["HS256"])
        assert claims["sub"] == "bob@example.com"

    def test_unverified_email_is_not_confirmed(self, gateway, realm):
        realm.add_user("carol@example.com", "password-1", ["VERIFY_EMAIL"])
        with pytest.raises(IdentityProviderError) as exc:
            gateway.authenticate("carol@example.com", "password-1")
        assert exc.value.kind is ProviderErrorKind.USER_NOT_CONFIRMED

    def test_network_failure_is_unexpected(self, gateway, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(requests, "post", boom)
        with pytest.raises(IdentityProviderError) as exc:
            gateway.authenticate("alice@example.com", "pw")
        assert exc.value.kind is ProviderErrorKind.UNEXPECTED
        assert exc.value.status == 500
        assert "connection refused" not in exc.value.message


class TestNewPasswordChallenge:
    def test_answering_the_challenge_enables_login(self, gateway, realm):
        realm.add_user("bob@example.com", "temp-password", ["UPDATE_PASSWORD"])
        challenge = gateway.authenticate("bob@example.com", "temp-password").challenge

        gateway.set_new_password("bob@example.com", "brand-new-password", challenge.session_code)
        gateway.verify_email("bob@example.com")

        user = realm.by_email("bob@example.com")
        assert user["requiredActions"] == []
        assert user["emailVerified"] is True
        assert gateway.authenticate("bob@example.com", "brand-new-password").tokens is not None

    def test_code_for_another_account_is_rejected(self, gateway, realm):
        realm.add_user("bob@example.com", "temp-password", ["UPDATE_PASSWORD"])
        realm.add_user("eve@example.com", "temp-password", ["UPDATE_PASSWORD"])
        challenge = gateway.authenticate("eve@example.com", "temp-password").challenge

        with pytest.raises(IdentityProviderError) as exc:
            gateway.set_new_password("bob@example.com", "brand-new-password", challenge.session_code)
        assert exc.value.kind is ProviderErrorKind.CODE_MISMATCH
        assert realm.by_email("bob@example.com")["password"] == "temp-password"

    def test_forged_code_is_rejected(self, gateway, realm):
        realm.add_user("bob@example.com", "temp-password", ["UPDATE_PASSWORD"])
        with pytest.raises(IdentityProviderError) as exc:
            gateway.set_new_password("bob@example.com", "brand-new-password", "not-a-session-code")
        assert exc.value.kind is ProviderErrorKind.CODE_MISMATCH

    def test_expired_code(self, realm, outbox):
        gateway = build_gateway(outbox, challenge_ttl_seconds=-60)
        realm.add_user("bob@example.com", "temp-password", ["UPDATE_PASSWORD"])
        challenge = gateway.authenticate("bob@example.com", "temp-password").challenge

        with pytest.raises(IdentityProviderError) as exc:
            gateway.set_new_password("bob@example.com", "brand-new-password", challenge.session_code)
        assert exc.value.kind is ProviderErrorKind.EXPIRED_CODE
        assert exc.value.message == "Session code has expired"


class TestTokens:
    def test_refresh_keeps_refresh_token(self, gateway, realm):
        user = realm.add_user("alice@example.com", "correct-horse")
        tokens = gateway.authenticate("alice@example.com", "correct-horse").tokens

        refreshed = gateway.refresh_token(tokens.refresh_token, user["id"])

        assert refreshed.tokens.access_token != tokens.access_token
        assert refreshed.tokens.refresh_token == tokens.refresh_token

    def test_refresh_for_another_subject_is_rejected(self, gateway, realm):
        realm.add_user("alice@example.com", "correct-horse")
        tokens = gateway.authenticate("alice@example.com", "correct-horse").tokens

        with pytest.raises(IdentityProviderError) as exc:
            gateway.refresh_token(tokens.refresh_token, "someone-else")
        assert exc.value.kind is ProviderErrorKind.NOT_AUTHORIZED

    def test_get_user_and_revoke(self, gateway, realm):
        user = realm.add_user("alice@example.com", "correct-horse")
        tokens = gateway.authenticate("alice@example.com", "correct-horse").tokens

        subject_id, attributes = gateway.get_user(tokens.access_token)
        assert subject_id == user["id"]
        assert attributes["email"] == "alice@example.com"

        gateway.revoke_token(tokens.access_token)
        with pytest.raises(IdentityProviderError) as exc:
            gateway.get_user(tokens.access_token)
        assert exc.value.kind is ProviderErrorKind.NOT_AUTHORIZED


class TestPasswordReset:
    def test_round_trip(self, gateway, realm, outbox):
        realm.add_user("alice@example.com", "old-password")
        gateway.request_password_reset("alice@example.com")

        (email, code), = outbox["codes"]
        assert email == "alice@example.com"
        assert re.fullmatch(r"\d{6}", code)
        attributes = realm.by_email("alice@example.com")["attributes"]
        assert attributes[RESET_DIGEST_ATTRIBUTE][0] != code

        gateway.confirm_password_reset("alice@example.com", "new-password", code)

        user = realm.by_email("alice@example.com")
        assert user["password"] == "new-password"
        assert RESET_DIGEST_ATTRIBUTE not in user["attributes"]
        assert RESET_EXPIRY_ATTRIBUTE not in user["attributes"]

    def test_wrong_code(self, gateway, realm, outbox):
        realm.add_user("alice@example.com", "old-password")
        gateway.request_password_reset("alice@example.com")
        (_, code), = outbox["codes"]
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(IdentityProviderError) as exc:
            gateway.confirm_password_reset("alice@example.com", "new-password", wrong)
        assert exc.value.kind is ProviderErrorKind.CODE_MISMATCH
        assert realm.by_email("alice@example.com")["password"] == "old-password"

    def test_expired_code(self, realm, outbox):
        gateway = build_gateway(outbox, reset_code_ttl_seconds=-60)
        realm.add_user("alice@example.com", "old-password")
        gateway.request_password_reset("alice@example.com")
        (_, code), = outbox["codes"]

        with pytest.raises(IdentityProviderError) as exc:
            gateway.confirm_password_reset("alice@example.com", "new-password", code)
        assert exc.value.kind is ProviderErrorKind.EXPIRED_CODE

    def test_unknown_account(self, gateway, outbox):
        with pytest.raises(IdentityProviderError) as exc:
            gateway.request_password_reset("ghost@example.com")
        assert exc.value.kind is ProviderErrorKind.USER_NOT_FOUND
        assert outbox["codes"] == []


def test_admin_set_password_clears_pending_update(gateway, realm):
    realm.add_user("bob@example.com", "temp-password", ["UPDATE_PASSWORD"])
    gateway.admin_set_password("bob@example.com", "chosen-by-admin")

    user = realm.by_email("bob@example.com")
    assert user["password"] == "chosen-by-admin"
    assert user["temporary"] is False
    assert user["requiredActions"] == []


def test_weak_password_is_invalid_password(gateway, realm):
    realm.add_user("bob@example.com", "temp-password")
    with pytest.raises(IdentityProviderError) as exc:
        gateway.admin_set_password("bob@example.com", "short")
    assert exc.value.kind is ProviderErrorKind.INVALID_PASSWORD
    assert exc.value.status == 400


class TestChangePassword:
    def test_changes_password(self, gateway, realm):
        realm.add_user("alice@example.com", "old-password")
        tokens = gateway.authenticate("alice@example.com", "old-password").tokens

        gateway.change_password(tokens.access_token, "old-password", "new-password")
        assert realm.by_email("alice@example.com")["password"] == "new-password"

    def test_wrong_old_password(self, gateway, realm):
        realm.add_user("alice@example.com", "old-password")
        tokens = gateway.authenticate("alice@example.com", "old-password").tokens

        with pytest.raises(IdentityProviderError) as exc:
            gateway.change_password(tokens.access_token, "guess", "new-password")
        assert exc.value.kind is ProviderErrorKind.NOT_AUTHORIZED
        assert realm.by_email("alice@example.com")["password"] == "old-password"


def test_delete_user(gateway, realm):
    realm.add_user("alice@example.com", "old-password")
    gateway.delete_user("alice@example.com")
    assert realm.by_email("alice@example.com") is None


def test_delete_unknown_user(gateway):
    with pytest.raises(IdentityProviderError) as exc:
        gateway.delete_user("ghost@example.com")
    assert exc.value.kind is ProviderErrorKind.USER_NOT_FOUND
    assert exc.value.status == 401


@pytest.mark.parametrize("status,error,description,kind", [
    (429, "", "", ProviderErrorKind.TOO_MANY_REQUESTS),
    (409, "", "", ProviderErrorKind.USER_ALREADY_EXISTS),
    (404, "", "", ProviderErrorKind.USER_NOT_FOUND),
    (401, "", "", ProviderErrorKind.NOT_AUTHORIZED),
    (400, "invalid_grant", "Invalid user credentials", ProviderErrorKind.NOT_AUTHORIZED),
    (400, "invalidPasswordHistoryMessage", "", ProviderErrorKind.INVALID_PASSWORD),
    (400, "", "", ProviderErrorKind.INVALID_PARAMETER),
    (502, "", "", ProviderErrorKind.UNEXPECTED),
])
def test_translate_api_error(status, error, description, kind):
    translated = translate_api_error(KeycloakAPIError(status, "body", "http://kc", error, description))
    assert translated.kind is kind
    assert translated.detail
