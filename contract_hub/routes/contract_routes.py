from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from contract_hub.application.engagement_service import EngagementService
from contract_hub.application.offer_service import OfferService
from contract_hub.application.query_service import QueryService
from contract_hub.application.workflow_service import WorkflowService
from contract_hub.db import get_db, get_read_db
from contract_hub.domain import statuses as st
from contract_hub.domain.inputs import ContractListQuery, WorkflowRequest
from contract_hub.policies import current_actor
from contract_hub.ui_strings import catalog_bundle
from contract_hub.workflow import flow_policy


contracts_bp = Blueprint("contracts", __name__)

_QUERY_SERVICE = QueryService()


def _workflow_service() -> WorkflowService:
    return WorkflowService(
        reference_prefix=current_app.config.get("REFERENCE_PREFIX", "CTR"),
        default_currency=current_app.config.get("DEFAULT_CURRENCY", "EUR"),
    )


def _offer_service() -> OfferService:
    return OfferService(default_currency=current_app.config.get("DEFAULT_CURRENCY", "EUR"))


def _engagement_service() -> EngagementService:
    return EngagementService(default_currency=current_app.config.get("DEFAULT_CURRENCY", "EUR"))


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


def _arg(name: str) -> str | None:
    return (request.args.get(name) or "").strip() or None


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _respond(result):
    return jsonify(result.payload), result.status_code


@contracts_bp.route("/api/contracts", methods=["GET", "POST"])
def contracts_api():
    actor = current_actor()
    if request.method == "POST":
        return _respond(_workflow_service().create_contract(get_db(), actor, _json_payload()))

    page, limit = _page_args()
    query = ContractListQuery(
        status=_arg("status"),
        contract_type=_arg("contract_type"),
        search=_arg("search"),
        start_date_from=_arg("start_date_from"),
        start_date_to=_arg("start_date_to"),
        page=page,
        limit=limit,
        sort=_arg("sort"),
    )
    return _respond(_QUERY_SERVICE.list_contracts(get_read_db(), actor, query))


@contracts_bp.route("/api/contracts/<int:contract_id>", methods=["GET", "PATCH", "DELETE"])
def contract_detail_api(contract_id: int):
    actor = current_actor()
    service = _workflow_service()
    if request.method == "PATCH":
        return _respond(service.edit_contract(get_db(), actor, contract_id, _json_payload()))
    if request.method == "DELETE":
        return _respond(service.delete_contract(get_db(), actor, contract_id))
    return _respond(service.get_contract(get_read_db(), actor, contract_id))


@contracts_bp.route("/api/contracts/<int:contract_id>/actions/<string:action>", methods=["POST"])
def contract_workflow_action_api(contract_id: int, action: str):
    workflow_request = WorkflowRequest(
        contract_id=contract_id,
        action=action,
        actor=current_actor(),
        payload=_json_payload(),
    )
    return _respond(_workflow_service().dispatch(get_db(), workflow_request))


@contracts_bp.route("/api/contracts/<int:contract_id>/submit", methods=["POST"], defaults={"action": flow_policy.SUBMIT})
@contracts_bp.route(
    "/api/contracts/<int:contract_id>/procurement/approve",
    methods=["POST"],
    defaults={"action": flow_policy.PROCUREMENT_APPROVE},
)
@contracts_bp.route(
    "/api/contracts/<int:contract_id>/procurement/reject",
    methods=["POST"],
    defaults={"action": flow_policy.PROCUREMENT_REJECT},
)
@contracts_bp.route(
    "/api/contracts/<int:contract_id>/legal/approve",
    methods=["POST"],
    defaults={"action": flow_policy.LEGAL_APPROVE},
)
@contracts_bp.route(
    "/api/contracts/<int:contract_id>/legal/reject",
    methods=["POST"],
    defaults={"action": flow_policy.LEGAL_REJECT},
)
@contracts_bp.route(
    "/api/contracts/<int:contract_id>/final/approve",
    methods=["POST"],
    defaults={"action": flow_policy.FINAL_APPROVE},
)
@contracts_bp.route(
    "/api/contracts/<int:contract_id>/final/reject",
    methods=["POST"],
    defaults={"action": flow_policy.FINAL_REJECT},
)
@contracts_bp.route("/api/contracts/<int:contract_id>/cancel", methods=["POST"], defaults={"action": flow_policy.CANCEL})
def contract_transition_api(contract_id: int, action: str):
    workflow_request = WorkflowRequest(
        contract_id=contract_id,
        action=action,
        actor=current_actor(),
        payload=_json_payload(),
    )
    return _respond(_workflow_service().dispatch(get_db(), workflow_request))


@contracts_bp.route("/api/contracts/<int:contract_id>/history", methods=["GET"])
def contract_history_api(contract_id: int):
    return _respond(_workflow_service().history(get_read_db(), current_actor(), contract_id))


@contracts_bp.route("/api/contracts/<int:contract_id>/offers", methods=["GET", "POST"])
def contract_offers_api(contract_id: int):
    actor = current_actor()
    service = _offer_service()
    if request.method == "POST":
        return _respond(service.submit_offer(get_db(), actor, contract_id, _json_payload()))
    page, limit = _page_args()
    return _respond(
        service.list_offers(
            get_read_db(),
            actor,
            contract_id,
            status=_arg("status"),
            sort=_arg("sort"),
            page=page,
            limit=limit,
        )
    )


@contracts_bp.route("/api/contracts/<int:contract_id>/offers/<int:offer_id>/select", methods=["POST"])
def contract_offer_select_api(contract_id: int, offer_id: int):
    return _respond(_offer_service().select_offer(get_db(), current_actor(), contract_id, offer_id, _json_payload()))


@contracts_bp.route("/api/offers/<int:offer_id>/withdraw", methods=["POST"])
def offer_withdraw_api(offer_id: int):
    return _respond(_offer_service().withdraw_offer(get_db(), current_actor(), offer_id))


@contracts_bp.route("/api/contracts/<int:contract_id>/requests", methods=["GET", "POST"])
def contract_requests_api(contract_id: int):
    actor = current_actor()
    service = _engagement_service()
    if request.method == "POST":
        return _respond(service.create_request(get_db(), actor, contract_id, _json_payload()))
    page, limit = _page_args()
    return _respond(
        service.list_requests(
            get_read_db(),
            actor,
            contract_id,
            status=_arg("status"),
            sort=_arg("sort"),
            page=page,
            limit=limit,
        )
    )


@contracts_bp.route("/api/requests", methods=["GET"])
def my_requests_api():
    page, limit = _page_args()
    return _respond(
        _engagement_service().list_my_requests(
            get_read_db(),
            current_actor(),
            status=_arg("status"),
            sort=_arg("sort"),
            page=page,
            limit=limit,
        )
    )


@contracts_bp.route("/api/requests/<int:request_id>/accept", methods=["POST"])
def request_accept_api(request_id: int):
    return _respond(_engagement_service().accept_request(get_db(), current_actor(), request_id, _json_payload()))


@contracts_bp.route("/api/requests/<int:request_id>/reject", methods=["POST"])
def request_reject_api(request_id: int):
    return _respond(_engagement_service().reject_request(get_db(), current_actor(), request_id, _json_payload()))


@contracts_bp.route("/api/requests/<int:request_id>/withdraw", methods=["POST"])
def request_withdraw_api(request_id: int):
    return _respond(_engagement_service().withdraw_request(get_db(), current_actor(), request_id))


@contracts_bp.route("/api/dashboard/stats", methods=["GET"])
def dashboard_stats_api():
    return _respond(_QUERY_SERVICE.dashboard_stats(get_read_db(), current_actor()))


@contracts_bp.route("/api/meta/catalog", methods=["GET"])
def catalog_api():
    return jsonify(
        {
            "contract_types": list(st.CONTRACT_TYPES),
            "statuses": {
                "live": [status for status in st.PIPELINE] + sorted(st.TERMINAL_STATUSES),
                "legacy": sorted(st.LEGACY_STATUSES),
            },
            "workflow": flow_policy.frontend_bundle(),
            **catalog_bundle(),
        }
    )
