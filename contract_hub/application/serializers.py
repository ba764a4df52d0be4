from __future__ import annotations

import json
from datetime import date
from typing import Any, Dict

from contract_hub.domain import statuses as st
from contract_hub.domain.inputs import Actor
from contract_hub.domain.workflow_log import WorkflowLog
from contract_hub.policies import CLIENT, SERVICE_PROVIDER
from contract_hub.ui_strings import build_status_labels, contract_status_label
from contract_hub.workflow import flow_policy


_OFFER_STATUS_LABELS = build_status_labels("offer")
_REQUEST_STATUS_LABELS = build_status_labels("request")


def is_contract_owner(contract: Dict[str, Any], actor: Actor | None) -> bool:
    """The client who owns the contract, or the provider it is assigned to."""
    if actor is None:
        return False
    if actor.role == CLIENT:
        return contract.get("client_id") is not None and int(contract["client_id"]) == int(actor.user_id)
    if actor.role == SERVICE_PROVIDER:
        assigned = contract.get("assigned_provider_id")
        return assigned is not None and int(assigned) == int(actor.user_id)
    return False


def _duration_days(start: str | None, end: str | None) -> int | None:
    if not start or not end:
        return None
    try:
        return (date.fromisoformat(str(end)[:10]) - date.fromisoformat(str(start)[:10])).days
    except ValueError:
        return None


def _deliverables(raw: Any) -> list:
    if not raw:
        return []
    if isinstance(raw, list):
        return raw
    return json.loads(raw)


def serialize_contract(contract: Dict[str, Any], *, actor: Actor | None = None) -> Dict[str, Any]:
    log = WorkflowLog.from_json(contract.get("workflow"))
    status = str(contract.get("status") or "")
    owner = is_contract_owner(contract, actor)
    payload: Dict[str, Any] = {
        "id": contract["id"],
        "reference_number": contract["reference_number"],
        "title": contract["title"],
        "contract_type": contract["contract_type"],
        "description": contract["description"],
        "target_conditions": contract.get("target_conditions"),
        "target_persons": contract.get("target_persons"),
        "budget": {
            "minimum": contract.get("budget_minimum"),
            "maximum": contract.get("budget_maximum"),
            "currency": contract.get("currency"),
        },
        "start_date": contract.get("start_date"),
        "end_date": contract.get("end_date"),
        "duration_days": _duration_days(contract.get("start_date"), contract.get("end_date")),
        "status": status,
        "status_label": contract_status_label(status, for_client=owner and actor.role == CLIENT),
        "is_legacy": st.is_legacy_status(status),
        "workflow": log.to_dict(),
        "selected_offer_id": log.selected_offer_id,
        "rejection": log.rejection(),
        "client_id": contract.get("client_id"),
        "created_by": contract.get("created_by"),
        "assigned_provider_id": contract.get("assigned_provider_id"),
        "cancellation_reason": contract.get("cancellation_reason"),
        "cancelled_at": contract.get("cancelled_at"),
        "version": contract.get("version"),
        "created_at": contract.get("created_at"),
        "updated_at": contract.get("updated_at"),
    }
    if actor is not None:
        payload["allowed_actions"] = flow_policy.allowed_actions(actor.role, status, owner)
    return payload


def serialize_offer(offer: Dict[str, Any]) -> Dict[str, Any]:
    status = str(offer.get("status") or "")
    return {
        "id": offer["id"],
        "contract_id": offer["contract_id"],
        "provider_id": offer["provider_id"],
        "amount": offer.get("amount"),
        "currency": offer.get("currency"),
        "timeline": {
            "start_date": offer.get("proposed_start_date"),
            "end_date": offer.get("proposed_end_date"),
        },
        "description": offer.get("description"),
        "deliverables": _deliverables(offer.get("deliverables")),
        "terms": offer.get("terms"),
        "status": status,
        "status_label": _OFFER_STATUS_LABELS.get(status, status),
        "decided_by": offer.get("decided_by"),
        "decided_at": offer.get("decided_at"),
        "decision_notes": offer.get("decision_notes"),
        "withdrawn_at": offer.get("withdrawn_at"),
        "created_at": offer.get("created_at"),
        "updated_at": offer.get("updated_at"),
    }


def serialize_request(engagement_request: Dict[str, Any]) -> Dict[str, Any]:
    status = str(engagement_request.get("status") or "")
    return {
        "id": engagement_request["id"],
        "contract_id": engagement_request["contract_id"],
        "provider_id": engagement_request["provider_id"],
        "service_name": engagement_request.get("service_name"),
        "budget": {
            "amount": engagement_request.get("budget_amount"),
            "currency": engagement_request.get("currency"),
        },
        "number_of_persons": engagement_request.get("number_of_persons"),
        "timeline": {
            "start_time": engagement_request.get("start_time"),
            "end_time": engagement_request.get("end_time"),
        },
        "description": engagement_request.get("description"),
        "deliverables": _deliverables(engagement_request.get("deliverables")),
        "cover_letter": engagement_request.get("cover_letter"),
        "status": status,
        "status_label": _REQUEST_STATUS_LABELS.get(status, status),
        "client_notes": engagement_request.get("client_notes"),
        "rejection_reason": engagement_request.get("rejection_reason"),
        "decided_by": engagement_request.get("decided_by"),
        "decided_at": engagement_request.get("decided_at"),
        "withdrawn_at": engagement_request.get("withdrawn_at"),
        "created_at": engagement_request.get("created_at"),
    }


def serialize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "display_name": user.get("display_name"),
        "role": user["role"],
        "is_active": bool(user.get("is_active")),
        "created_at": user.get("created_at"),
        "updated_at": user.get("updated_at"),
    }


def pagination_meta(*, page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = (total + limit - 1) // limit if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
