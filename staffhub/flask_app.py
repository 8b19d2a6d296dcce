"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, the database and configuration.

Gunicorn entry point: ``staffhub.flask_app:create_app()``
"""
from __future__ import annotations
import logging
from typing import Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from staffhub.config import AppConfig, load_settings
from staffhub.models import db

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(config: Optional[AppConfig] = None, gateway=None, assets=None) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Settings to use instead of ``load_settings()``
        gateway: Identity gateway to use instead of the Keycloak one
        assets: Asset store to use instead of the HTTP one
    """
    cfg = config or load_settings()

    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg
    app.config["SECRET_KEY"] = cfg.secret_key
    app.config["DEMO_MODE"] = cfg.demo_mode
    app.config["SQLALCHEMY_DATABASE_URI"] = cfg.database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.json.sort_keys = False

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    db.init_app(app)
    with app.app_context():
        db.create_all()

    from staffhub.api.services import EXTENSION_KEY, build_services
    app.extensions[EXTENSION_KEY] = build_services(cfg, gateway=gateway, assets=assets)

    # Register blueprints
    from staffhub.api import auth, errors, health, structure, users

    app.register_blueprint(auth.bp)
    app.register_blueprint(users.bp)
    app.register_blueprint(structure.bp)
    app.register_blueprint(health.bp)

    # Register error handlers
    errors.register_error_handlers(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    logger.info("Mode=%s; realm=%s", mode_label, cfg.keycloak_realm)
    if cfg.demo_mode:
        logger.warning("Demo mode active - do not deploy with demo credentials")

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="0.0.0.0", port=5000, debug=True)
