"""Gunicorn configuration file.

Run with:
    gunicorn -c gunicorn.conf.py "staffhub.flask_app:create_app()"

Secrets are read by ``staffhub.config.load_settings`` from /run/secrets
(Docker secrets) first, then from the environment.
"""
import os
from pathlib import Path

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info")


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    Reports where this worker will take its secrets from.
    """
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    if demo_mode:
        worker.log.warning("DEMO_MODE=true - demo defaults in use, do not deploy")

    secrets_dir = Path("/run/secrets")
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = list(secrets_dir.glob("*"))
        if secret_files:
            worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets")
            return

    worker.log.info("No /run/secrets mount, reading secrets from the environment")
