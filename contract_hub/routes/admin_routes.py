from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from contract_hub.application.query_service import QueryService
from contract_hub.application.user_service import UserService
from contract_hub.db import get_db, get_read_db
from contract_hub.domain.inputs import UserCreateInput
from contract_hub.errors import ValidationError
from contract_hub.policies import ADMIN, current_actor, require_roles


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

_USER_SERVICE = UserService()
_QUERY_SERVICE = QueryService()


def _parse_int(value: str | None, default: int, min_value: int, max_value: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(min_value, min(parsed, max_value))


def _page_args() -> tuple[int, int]:
    default_limit = int(current_app.config.get("PAGINATION_DEFAULT_LIMIT", 10))
    max_limit = int(current_app.config.get("PAGINATION_MAX_LIMIT", 100))
    page = _parse_int(request.args.get("page"), default=1, min_value=1, max_value=100_000)
    limit = _parse_int(request.args.get("limit"), default=default_limit, min_value=1, max_value=max_limit)
    return page, limit


def _parse_bool_arg(name: str) -> bool | None:
    raw = (request.args.get(name) or "").strip().lower()
    if not raw:
        return None
    if raw in {"1", "true", "yes"}:
        return True
    if raw in {"0", "false", "no"}:
        return False
    raise ValidationError(fields={name: ["Expected true or false"]})


@admin_bp.route("/users", methods=["GET", "POST"])
def users_api():
    actor = current_actor()
    if request.method == "POST":
        payload = request.get_json(silent=True) or {}
        create_input = UserCreateInput(
            email=str(payload.get("email") or ""),
            role=str(payload.get("role") or ""),
            display_name=payload.get("display_name"),
            is_active=bool(payload.get("is_active", True)),
        )
        result = _USER_SERVICE.create_user(get_db(), actor, create_input)
        return jsonify(result.payload), result.status_code

    page, limit = _page_args()
    result = _USER_SERVICE.list_users(
        get_read_db(),
        actor,
        role=(request.args.get("role") or "").strip() or None,
        is_active=_parse_bool_arg("is_active"),
        search=(request.args.get("search") or "").strip() or None,
        page=page,
        limit=limit,
    )
    return jsonify(result.payload), result.status_code


@admin_bp.route("/users/<int:user_id>", methods=["GET", "PATCH"])
def user_detail_api(user_id: int):
    if request.method == "GET":
        result = _USER_SERVICE.get_user(get_read_db(), current_actor(), user_id)
        return jsonify(result.payload), result.status_code
    payload = request.get_json(silent=True) or {}
    result = _USER_SERVICE.update_user(get_db(), current_actor(), user_id, payload)
    return jsonify(result.payload), result.status_code


@admin_bp.route("/audit-events", methods=["GET"])
def audit_events_api():
    require_roles(ADMIN)
    page, limit = _page_args()
    actor_id = _parse_int(request.args.get("actor_id"), default=0, min_value=0, max_value=2**31)
    result = _QUERY_SERVICE.list_audit_events(
        get_read_db(),
        entity=(request.args.get("entity") or "").strip() or None,
        action=(request.args.get("action") or "").strip() or None,
        actor_id=actor_id or None,
        page=page,
        limit=limit,
    )
    return jsonify(result.payload), result.status_code


@admin_bp.route("/reports", methods=["GET"])
def reports_api():
    result = _QUERY_SERVICE.build_report(
        get_read_db(),
        current_actor(),
        report_type=(request.args.get("type") or "").strip() or None,
        start_date=(request.args.get("start_date") or "").strip() or None,
        end_date=(request.args.get("end_date") or "").strip() or None,
    )
    return jsonify(result.payload), result.status_code
