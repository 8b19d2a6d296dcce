"""Session, registration and password routes."""
from __future__ import annotations
import logging

from flask import Blueprint, jsonify, request

from staffhub.api.decorators import extract_bearer_token, require_bearer_token
from staffhub.api.services import get_services
from staffhub.core.errors import UnauthenticatedError
from staffhub.core.principal import resolve_actor

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/auth")


def request_payload() -> dict:
    """JSON body, falling back to form fields."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()


# ─────────────────────────────────────────────────────────────────────────────
# Sessions
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/login", methods=["POST"])
def login():
    payload = request_payload()
    result = get_services().sessions.login(payload.get("email"), payload.get("password"))
    if not result.authenticated:
        return jsonify(result.challenge_body()), 401

    return jsonify({
        "access_token": result.tokens.access_token,
        "refresh_token": result.tokens.refresh_token,
        "sub_id": result.subject_id,
        "user": result.user.public_attributes(),
        "message": "Logged in successfully",
    }), 200


@bp.route("/refresh_token", methods=["POST"])
def refresh_token():
    """Refresh the access token.

    Headers: ``Authorization``, ``Refresh-Authorization`` (both ``Bearer``)
    and ``Sub-Id``.
    """
    extract_bearer_token(request.headers.get("Authorization"))
    refresh = extract_bearer_token(
        request.headers.get("Refresh-Authorization"),
        "Missing Refresh Authorization Header",
    )
    subject_id = (request.headers.get("Sub-Id") or "").strip()
    if not subject_id:
        raise UnauthenticatedError("Missing Sub-Id Header")

    result = get_services().sessions.refresh(refresh, subject_id)
    if not result.authenticated:
        return jsonify(result.challenge_body()), 401

    return jsonify({
        "access_token": result.tokens.access_token,
        "message": "Token refreshed successfully",
    }), 200


@bp.route("/logout", methods=["DELETE"])
def logout():
    access_token = extract_bearer_token(request.headers.get("Authorization"))
    get_services().sessions.logout(access_token)
    return jsonify({"message": "Logged out successfully"}), 200


# ─────────────────────────────────────────────────────────────────────────────
# Registration
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/register", methods=["POST"])
@require_bearer_token
def register(principal):
    services = get_services()
    actor = resolve_actor(services.directory, principal)
    user = services.provisioning.register_user(actor, request_payload())
    return jsonify({"user": user.public_attributes(), "message": "User created successfully"}), 201


# ─────────────────────────────────────────────────────────────────────────────
# Passwords
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/password/set", methods=["POST"])
def set_new_password():
    payload = request_payload()
    message = get_services().passwords.set_new_password(
        payload.get("email"), payload.get("new_password"), payload.get("session_code"),
    )
    return jsonify({"message": message}), 200


@bp.route("/password/forgot", methods=["POST"])
def request_password_reset():
    payload = request_payload()
    message = get_services().passwords.request_reset(payload.get("email"))
    return jsonify({"message": message}), 200


@bp.route("/password/reset", methods=["POST"])
def reset_password():
    payload = request_payload()
    message = get_services().passwords.confirm_reset(
        payload.get("email"), payload.get("new_password"), payload.get("confirmation_code"),
    )
    return jsonify({"message": message}), 200


@bp.route("/password/change", methods=["POST"])
@require_bearer_token
def change_password(principal):
    payload = request_payload()
    message = get_services().passwords.change_password(
        principal, payload.get("old_password"), payload.get("new_password"),
    )
    return jsonify({"message": message}), 200


@bp.route("/admin/password/reset", methods=["POST"])
@require_bearer_token
def admin_reset_password(principal):
    services = get_services()
    actor = resolve_actor(services.directory, principal)
    payload = request_payload()
    message = services.passwords.admin_reset(
        actor, payload.get("email"), payload.get("new_password"), payload.get("user_type"),
    )
    return jsonify({"message": message}), 200
