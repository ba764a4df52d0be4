from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Contract Hub",
    "contract": "Contract",
    "offer": "Offer",
    "request": "Engagement request",
    "provider": "Service provider",
    "client": "Client",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "contract": [
        {
            "key": "draft",
            "label": "Draft",
            "description": "Contract is being prepared by its client and is not yet under review.",
        },
        {
            "key": "pending_procurement",
            "label": "Pending procurement review",
            "description": "Waiting for a procurement manager to approve or reject.",
        },
        {
            "key": "pending_legal",
            "label": "Pending legal review",
            "description": "Procurement approved; waiting for legal counsel.",
        },
        {
            "key": "open_for_offers",
            "label": "Open for offers",
            "description": "Legal approved; service providers may submit offers.",
        },
        {
            "key": "offer_selected",
            "label": "Offer selected",
            "description": "A coordinator selected the winning offer.",
        },
        {
            "key": "pending_final_approval",
            "label": "Pending final approval",
            "description": "Waiting for an administrator to confirm the selected offer.",
        },
        {
            "key": "final_approved",
            "label": "Final approved",
            "description": "Contract is approved and frozen; the selected provider is assigned.",
        },
        {
            "key": "rejected",
            "label": "Rejected",
            "description": "Rejected at a review stage. A new contract must be created.",
        },
        {
            "key": "cancelled",
            "label": "Cancelled",
            "description": "Withdrawn from the pipeline before final approval.",
        },
    ],
    "contract_legacy": [
        {
            "key": "pending_approval",
            "label": "Pending approval (legacy)",
            "description": "Imported from the previous single-step approval flow.",
        },
        {
            "key": "published",
            "label": "Published (legacy)",
            "description": "Imported from the previous publishing flow.",
        },
        {
            "key": "searching_provider",
            "label": "Searching provider (legacy)",
            "description": "Imported while a provider was being searched.",
        },
        {
            "key": "provider_assigned",
            "label": "Provider assigned (legacy)",
            "description": "Imported with a provider already assigned.",
        },
        {
            "key": "in_progress",
            "label": "In progress (legacy)",
            "description": "Imported while the service was running.",
        },
        {
            "key": "completed",
            "label": "Completed (legacy)",
            "description": "Imported after the service was completed.",
        },
    ],
    "offer": [
        {"key": "pending", "label": "Pending", "description": "Offer waits for the coordinator decision."},
        {"key": "selected", "label": "Selected", "description": "Offer won the selection."},
        {"key": "rejected", "label": "Rejected", "description": "Another offer was selected or the contract closed."},
        {"key": "withdrawn", "label": "Withdrawn", "description": "Provider withdrew the offer."},
    ],
    "request": [
        {"key": "pending", "label": "Pending", "description": "Request waits for the client decision."},
        {"key": "accepted", "label": "Accepted", "description": "Client accepted the engagement."},
        {"key": "rejected", "label": "Rejected", "description": "Client declined the engagement."},
        {"key": "withdrawn", "label": "Withdrawn", "description": "Provider withdrew the request."},
    ],
}


# Labels shown to the owning client instead of the internal pipeline status.
CLIENT_STATUS_LABELS: Dict[str, str] = {
    "draft": "Request Pending",
    "pending_procurement": "Pending Procurement Review",
    "pending_legal": "Pending Legal Review",
    "open_for_offers": "Open for Provider Offers",
    "offer_selected": "Offer Selected",
    "pending_final_approval": "Pending Final Approval",
    "final_approved": "Contract Approved",
    "pending_approval": "Waiting for Approval",
    "published": "Searching Provider",
    "searching_provider": "Searching Provider",
    "provider_assigned": "Request Accepted",
    "in_progress": "Request Accepted",
    "completed": "Contract Completed",
}


ACTION_LABELS: Dict[str, str] = {
    "submit": "Submit for review",
    "edit": "Edit contract",
    "delete": "Delete contract",
    "cancel": "Cancel contract",
    "procurement_approve": "Approve (procurement)",
    "procurement_reject": "Reject (procurement)",
    "legal_approve": "Approve (legal)",
    "legal_reject": "Reject (legal)",
    "submit_offer": "Submit offer",
    "withdraw_offer": "Withdraw offer",
    "select_offer": "Select offer",
    "final_approve": "Final approval",
    "final_reject": "Final rejection",
    "create_request": "Request engagement",
    "accept_request": "Accept request",
    "reject_request": "Reject request",
    "withdraw_request": "Withdraw request",
    "view_history": "View history",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "contract_created": "Contract created.",
        "contract_updated": "Contract updated.",
        "contract_deleted": "Contract deleted.",
        "contract_submitted": "Contract submitted for procurement review.",
        "contract_cancelled": "Contract cancelled.",
        "procurement_approved": "Contract approved by procurement and sent to legal review.",
        "procurement_rejected": "Contract rejected by procurement.",
        "legal_approved": "Contract approved by legal and opened for offers.",
        "legal_rejected": "Contract rejected by legal.",
        "offer_submitted": "Offer submitted.",
        "offer_withdrawn": "Offer withdrawn.",
        "offer_selected": "Offer selected and sent for final approval.",
        "final_approved": "Contract approved. The selected provider is now assigned.",
        "final_rejected": "Contract rejected at final approval.",
        "request_created": "Engagement request sent.",
        "request_accepted": "Engagement request accepted.",
        "request_rejected": "Engagement request rejected.",
        "request_withdrawn": "Engagement request withdrawn.",
        "user_created": "User created.",
        "user_updated": "User updated.",
    },
    "error": {
        "action_unknown": "This action is not supported.",
        "auth_required": "Authentication required.",
        "client_not_found": "Client not found or inactive.",
        "contract_frozen": "Approved contracts can no longer be changed.",
        "contract_not_found": "Contract not found.",
        "duplicate_offer": "You already have an active offer on this contract.",
        "duplicate_request": "You already have a pending request on this contract.",
        "email_already_registered": "This email is already registered.",
        "forbidden": "You are not allowed to perform this action.",
        "invalid_state": "This operation is not available in the current state.",
        "invalid_transition": "This action is not allowed for the current contract status.",
        "no_changes": "No changes were provided.",
        "not_found": "Resource not found.",
        "offer_not_found": "Offer not found.",
        "offer_not_pending": "Only pending offers can be changed.",
        "rate_limit_exceeded": "Too many requests. Try again shortly.",
        "request_not_found": "Engagement request not found.",
        "request_not_pending": "Only pending requests can be changed.",
        "stage_already_recorded": "This review stage was already decided.",
        "unexpected_error": "The operation could not be completed. Try again shortly.",
        "user_not_found": "User not found.",
        "validation_error": "Some fields are invalid. Review them and try again.",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_items_for_group(group: str) -> List[Dict[str, str]]:
    return list(STATUS_GROUPS.get(group, []))


def build_status_labels(group: str) -> Dict[str, str]:
    return {item["key"]: item["label"] for item in STATUS_GROUPS.get(group, [])}


CONTRACT_STATUS_LABELS = {**build_status_labels("contract"), **build_status_labels("contract_legacy")}


def contract_status_label(status: str | None, *, for_client: bool = False) -> str:
    key = str(status or "").strip()
    if for_client and key in CLIENT_STATUS_LABELS:
        return CLIENT_STATUS_LABELS[key]
    return CONTRACT_STATUS_LABELS.get(key, key)


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def catalog_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "status_groups": STATUS_GROUPS,
        "client_status_labels": CLIENT_STATUS_LABELS,
        "action_labels": ACTION_LABELS,
    }
