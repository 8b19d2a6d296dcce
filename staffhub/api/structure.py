"""CRUD routes for organizations, branches, areas and job roles.

Each resource gets the same five routes::

    GET    /<plural>            paginated list
    GET    /<plural>/<id>       one entity
    POST   /<plural>            create
    PUT    /<plural>/<id>       update (PATCH accepted)
    DELETE /<plural>/<id>       delete
"""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from staffhub.api.auth import request_payload
from staffhub.api.decorators import require_bearer_token
from staffhub.api.services import get_services
from staffhub.core.principal import resolve_actor
from staffhub.core.user_management import page_params

bp = Blueprint("structure", __name__)

# plural -> (singular, label)
RESOURCES = {
    "organizations": ("organization", "Organization"),
    "branches": ("branch", "Branch"),
    "areas": ("area", "Area"),
    "roles": ("role", "Role"),
}


def _actor(principal):
    services = get_services()
    return services.structure, resolve_actor(services.directory, principal)


def _register(plural: str, singular: str, label: str) -> None:
    def index(principal):
        service, actor = _actor(principal)
        cfg = current_app.config["APP_CONFIG"]
        page, per_page = page_params(request.args.get("page"), request.args.get("per_page"), cfg.default_per_page)
        result = getattr(service, f"list_{plural}")(actor, page, per_page)
        return jsonify({
            plural: [item.public_attributes() for item in result["items"]],
            "meta": result["meta"],
        }), 200

    def show(principal, entity_id):
        service, actor = _actor(principal)
        entity = getattr(service, f"get_{singular}")(actor, entity_id)
        return jsonify({singular: entity.public_attributes()}), 200

    def create(principal):
        service, actor = _actor(principal)
        entity = getattr(service, f"create_{singular}")(actor, request_payload())
        return jsonify({singular: entity.public_attributes(), "message": f"{label} created successfully"}), 201

    def update(principal, entity_id):
        service, actor = _actor(principal)
        entity = getattr(service, f"update_{singular}")(actor, entity_id, request_payload())
        return jsonify({singular: entity.public_attributes(), "message": f"{label} updated successfully"}), 200

    def destroy(principal, entity_id):
        service, actor = _actor(principal)
        message = getattr(service, f"delete_{singular}")(actor, entity_id)
        return jsonify({"message": message}), 200

    bp.add_url_rule(f"/{plural}", f"list_{plural}", require_bearer_token(index), methods=["GET"])
    bp.add_url_rule(f"/{plural}", f"create_{singular}", require_bearer_token(create), methods=["POST"])
    bp.add_url_rule(f"/{plural}/<entity_id>", f"show_{singular}", require_bearer_token(show), methods=["GET"])
    bp.add_url_rule(f"/{plural}/<entity_id>", f"update_{singular}", require_bearer_token(update),
                    methods=["PUT", "PATCH"])
    bp.add_url_rule(f"/{plural}/<entity_id>", f"delete_{singular}", require_bearer_token(destroy),
                    methods=["DELETE"])


for _plural, (_singular, _label) in RESOURCES.items():
    _register(_plural, _singular, _label)
