"""Low-level HTTP client for a Keycloak realm.

Handles service-account authentication, token management, and HTTP
operations against both the OpenID Connect endpoints and the Admin API.
"""
from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime, timedelta

import requests

from .exceptions import KeycloakAPIError

REQUEST_TIMEOUT = 5


class KeycloakClient:
    """HTTP client for one Keycloak realm with automatic admin token management.

    Features:
    - Service-account (client credentials) token, refreshed before expiry
    - Unauthenticated calls to the realm's OIDC token and userinfo endpoints
    - Centralized error handling

    Usage:
        client = KeycloakClient("http://keycloak:8080", "staffhub")
        client.authenticate_service_account("staffhub-admin", "secret")
        response = client.get("/users", params={"email": "alice@example.com"})
    """

    def __init__(self, base_url: str, realm: str):
        """Initialize Keycloak client.

        Args:
            base_url: Keycloak base URL (e.g. http://keycloak:8080)
            realm: Realm holding the staff accounts
        """
        self.base_url = base_url.rstrip("/")
        self.realm = realm
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_params: Dict[str, Any] = {}

    @property
    def token_endpoint(self) -> str:
        return f"{self.base_url}/realms/{self.realm}/protocol/openid-connect/token"

    @property
    def userinfo_endpoint(self) -> str:
        return f"{self.base_url}/realms/{self.realm}/protocol/openid-connect/userinfo"

    @property
    def admin_base(self) -> str:
        return f"{self.base_url}/admin/realms/{self.realm}"

    def use_service_account(self, client_id: str, client_secret: str) -> None:
        """Store service-account credentials; the token is fetched on first admin call."""
        self._auth_params = {"client_id": client_id, "client_secret": client_secret}
        self._token = None
        self._token_expires_at = None

    def authenticate_service_account(self, client_id: str, client_secret: str) -> str:
        """Authenticate as service account and store credentials for auto-refresh.

        Args:
            client_id: Service account client ID
            client_secret: Service account client secret

        Returns:
            Access token
        """
        self._auth_params = {"client_id": client_id, "client_secret": client_secret}
        payload = self.token_request({
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        })
        self._token = payload["access_token"]
        expires_in = int(payload.get("expires_in") or 60)
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
        return self._token

    def _ensure_authenticated(self) -> None:
        """Ensure we have a valid admin token, refreshing if necessary."""
        if not self._auth_params:
            raise KeycloakAPIError(401, "Not authenticated - call authenticate_service_account first", "")

        # Refresh if token expired or expiring soon (within 10 seconds)
        if not self._token or not self._token_expires_at or datetime.now() >= self._token_expires_at - timedelta(seconds=10):
            self.authenticate_service_account(
                self._auth_params["client_id"],
                self._auth_params["client_secret"],
            )

    def _admin_headers(self, headers: Optional[Dict] = None) -> Dict:
        self._ensure_authenticated()
        headers = dict(headers or {})
        headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute an Admin API GET relative to the realm.

        Raises:
            KeycloakAPIError: On HTTP error
        """
        headers = self._admin_headers(kwargs.pop("headers", None))
        resp = requests.get(f"{self.admin_base}{path}", params=params, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        self._handle_error(resp)
        return resp

    def post(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """Execute an Admin API POST relative to the realm.

        Raises:
            KeycloakAPIError: On HTTP error
        """
        headers = self._admin_headers(kwargs.pop("headers", None))
        resp = requests.post(f"{self.admin_base}{path}", json=json, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        self._handle_error(resp)
        return resp

    def put(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """Execute an Admin API PUT relative to the realm.

        Raises:
            KeycloakAPIError: On HTTP error
        """
        headers = self._admin_headers(kwargs.pop("headers", None))
        resp = requests.put(f"{self.admin_base}{path}", json=json, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        self._handle_error(resp)
        return resp

    def delete(self, path: str, **kwargs) -> requests.Response:
        """Execute an Admin API DELETE relative to the realm.

        Raises:
            KeycloakAPIError: On HTTP error
        """
        headers = self._admin_headers(kwargs.pop("headers", None))
        resp = requests.delete(f"{self.admin_base}{path}", headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        self._handle_error(resp)
        return resp

    def token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        """POST a grant to the realm token endpoint and return the token payload.

        Raises:
            KeycloakAPIError: On any non-200 answer
        """
        resp = requests.post(self.token_endpoint, data=data, timeout=REQUEST_TIMEOUT)
        if resp.status_code != 200:
            self._raise(resp)
        return resp.json()

    def userinfo(self, access_token: str) -> Dict[str, Any]:
        """Resolve an end-user access token via the userinfo endpoint.

        Raises:
            KeycloakAPIError: If the token is invalid, expired or revoked
        """
        resp = requests.get(
            self.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=REQUEST_TIMEOUT,
        )
        self._handle_error(resp)
        return resp.json()

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            KeycloakAPIError: If response status indicates error
        """
        if resp.status_code >= 400:
            self._raise(resp)

    @staticmethod
    def _raise(resp: requests.Response) -> None:
        error = description = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            error = body.get("error") or body.get("errorMessage")
            description = body.get("error_description") or body.get("errorMessage")
        raise KeycloakAPIError(resp.status_code, resp.text, str(resp.url), error, description)
