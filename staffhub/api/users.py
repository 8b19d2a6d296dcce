"""User management and profile routes."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from staffhub.api.auth import request_payload
from staffhub.api.decorators import require_bearer_token
from staffhub.api.services import get_services
from staffhub.core.principal import resolve_actor
from staffhub.core.user_management import page_params

bp = Blueprint("users", __name__)


def _paging() -> tuple[int, int]:
    cfg = current_app.config["APP_CONFIG"]
    return page_params(request.args.get("page"), request.args.get("per_page"), cfg.default_per_page)


def _render_page(key: str, result: dict):
    return jsonify({
        key: [item.public_attributes() for item in result["items"]],
        "meta": result["meta"],
    }), 200


@bp.route("/profile", methods=["GET"])
@require_bearer_token
def profile(principal):
    user = get_services().users.profile(principal)
    return jsonify({"profile": user.public_attributes()}), 200


@bp.route("/users", methods=["GET"])
@require_bearer_token
def list_users(principal):
    services = get_services()
    actor = resolve_actor(services.directory, principal)
    page, per_page = _paging()
    result = services.users.list_users(actor, request.args.get("user_type"), page, per_page)
    return _render_page("users", result)


@bp.route("/users/archived", methods=["GET"])
@require_bearer_token
def list_archived_users(principal):
    services = get_services()
    actor = resolve_actor(services.directory, principal)
    page, per_page = _paging()
    return _render_page("users", services.users.list_archived(actor, page, per_page))


@bp.route("/users/<user_id>", methods=["GET"])
@require_bearer_token
def show_user(principal, user_id):
    services = get_services()
    actor = resolve_actor(services.directory, principal)
    user = services.users.get_user(actor, user_id)
    return jsonify({"user": user.public_attributes()}), 200


@bp.route("/user/toggle_archive_state", methods=["POST"])
@require_bearer_token
def toggle_archive_state(principal):
    services = get_services()
    actor = resolve_actor(services.directory, principal)
    payload = request_payload()
    user, message = services.users.toggle_archive_state(actor, payload.get("id"), payload.get("action_type"))
    return jsonify({"message": message, "user": user.public_attributes()}), 200


@bp.route("/user/<user_id>", methods=["DELETE"])
@require_bearer_token
def delete_user(principal, user_id):
    services = get_services()
    actor = resolve_actor(services.directory, principal)
    message = services.users.delete_user(actor, user_id)
    return jsonify({"message": message}), 200
