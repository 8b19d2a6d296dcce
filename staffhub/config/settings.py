"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info("Loaded %s from /run/secrets", secret_name)
                return secret_value
        except OSError as e:
            logger.error("Failed to read /run/secrets/%s: %s", secret_name, e)

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str
    database_url: str = "sqlite:///staffhub.db"

    # Keycloak/OIDC
    keycloak_url: str = ""
    keycloak_realm: str = "staffhub"
    keycloak_issuer: str = ""
    jwt_validation_enabled: bool = True

    # OIDC client used for password/refresh grants
    oidc_client_id: str = "staffhub-api"
    oidc_client_secret: str = ""

    # Service account used for admin operations
    keycloak_service_client_id: str = "staffhub-admin"
    keycloak_service_client_secret: str = ""

    # Password challenge / reset codes
    challenge_ttl_seconds: int = 180
    reset_code_ttl_seconds: int = 3600

    # Employee QR assets
    asset_storage_url: str = ""
    asset_public_url: str = ""
    qr_code_suffix: str = "StaffHub"

    # Listing
    default_per_page: int = 20

    @property
    def challenge_signing_key(self) -> str:
        """Key used to sign password-challenge session codes.

        Falls back to the Flask secret key when the OIDC client is public
        (no client secret configured).
        """
        return self.oidc_client_secret or self.secret_key


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default/generate."""
    value = _load_secret_from_file(var_name.lower(), var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        logger.info("[demo-mode] Using default for %s", var_name)
        os.environ[var_name] = demo_default
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _int_env(var_name: str, default: int) -> int:
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer, got {raw!r}")


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # Flask secret key
    secret_key = _load_secret_from_file("flask_secret_key", "FLASK_SECRET_KEY")
    if not secret_key:
        if not demo_mode:
            raise RuntimeError("FLASK_SECRET_KEY not found in /run/secrets or environment")
        secret_key = secrets.token_urlsafe(48)
        os.environ["FLASK_SECRET_KEY"] = secret_key
        logger.info("[demo-mode] Generated temporary FLASK_SECRET_KEY")

    database_url = _get_or_generate(
        "DATABASE_URL",
        demo_default="sqlite:///staffhub.db",
        demo_mode=demo_mode,
    )

    keycloak_url = _get_or_generate(
        "KEYCLOAK_URL",
        demo_default="http://127.0.0.1:8080",
        demo_mode=demo_mode,
    ).rstrip("/")
    keycloak_realm = os.environ.get("KEYCLOAK_REALM", "staffhub")
    keycloak_issuer = os.environ.get("KEYCLOAK_ISSUER") or f"{keycloak_url}/realms/{keycloak_realm}"
    jwt_validation_enabled = os.environ.get("JWT_VALIDATION_ENABLED", "true").lower() == "true"

    oidc_client_id = _get_or_generate("OIDC_CLIENT_ID", demo_default="staffhub-api", demo_mode=demo_mode)
    oidc_client_secret = _get_or_generate("OIDC_CLIENT_SECRET", required=False, demo_mode=demo_mode)

    keycloak_service_client_id = _get_or_generate(
        "KEYCLOAK_SERVICE_CLIENT_ID",
        demo_default="staffhub-admin",
        demo_mode=demo_mode,
    )
    keycloak_service_client_secret = _get_or_generate(
        "KEYCLOAK_SERVICE_CLIENT_SECRET",
        demo_default="demo-service-secret",
        demo_mode=demo_mode,
    )

    asset_storage_url = _get_or_generate(
        "ASSET_STORAGE_URL",
        demo_default="http://127.0.0.1:9000",
        demo_mode=demo_mode,
    ).rstrip("/")
    asset_public_url = os.environ.get("ASSET_PUBLIC_URL") or f"{asset_storage_url}/user/"
    if not asset_public_url.endswith("/"):
        asset_public_url += "/"

    cfg = AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        database_url=database_url,
        keycloak_url=keycloak_url,
        keycloak_realm=keycloak_realm,
        keycloak_issuer=keycloak_issuer,
        jwt_validation_enabled=jwt_validation_enabled,
        oidc_client_id=oidc_client_id,
        oidc_client_secret=oidc_client_secret,
        keycloak_service_client_id=keycloak_service_client_id,
        keycloak_service_client_secret=keycloak_service_client_secret,
        challenge_ttl_seconds=_int_env("CHALLENGE_TTL_SECONDS", 180),
        reset_code_ttl_seconds=_int_env("RESET_CODE_TTL_SECONDS", 3600),
        asset_storage_url=asset_storage_url,
        asset_public_url=asset_public_url,
        qr_code_suffix=os.environ.get("QR_CODE_SUFFIX", "StaffHub"),
        default_per_page=_int_env("DEFAULT_PER_PAGE", 20),
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info("Mode=%s; realm=%s; client_id=%s", mode_label, keycloak_realm, oidc_client_id)
    if demo_mode:
        logger.warning("Demo credentials in use. Do not deploy with these defaults.")

    return cfg
