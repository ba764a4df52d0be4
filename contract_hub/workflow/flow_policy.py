from __future__ import annotations

from typing import Dict, FrozenSet, List, Type

from contract_hub.domain import statuses as st
from contract_hub.errors import AppError, ForbiddenError, InvalidTransitionError, UserActionError
from contract_hub.policies import (
    ADMIN,
    CLIENT,
    CONTRACT_COORDINATOR,
    LEGAL_COUNSEL,
    PROCUREMENT_MANAGER,
    SERVICE_PROVIDER,
)


CREATE = "create"
SUBMIT = "submit"
EDIT = "edit"
DELETE = "delete"
CANCEL = "cancel"
PROCUREMENT_APPROVE = "procurement_approve"
PROCUREMENT_REJECT = "procurement_reject"
LEGAL_APPROVE = "legal_approve"
LEGAL_REJECT = "legal_reject"
SUBMIT_OFFER = "submit_offer"
WITHDRAW_OFFER = "withdraw_offer"
SELECT_OFFER = "select_offer"
FINAL_APPROVE = "final_approve"
FINAL_REJECT = "final_reject"
CREATE_REQUEST = "create_request"
ACCEPT_REQUEST = "accept_request"
REJECT_REQUEST = "reject_request"
WITHDRAW_REQUEST = "withdraw_request"
VIEW_HISTORY = "view_history"

ACTIONS: FrozenSet[str] = frozenset(
    {
        CREATE,
        SUBMIT,
        EDIT,
        DELETE,
        CANCEL,
        PROCUREMENT_APPROVE,
        PROCUREMENT_REJECT,
        LEGAL_APPROVE,
        LEGAL_REJECT,
        SUBMIT_OFFER,
        WITHDRAW_OFFER,
        SELECT_OFFER,
        FINAL_APPROVE,
        FINAL_REJECT,
        CREATE_REQUEST,
        ACCEPT_REQUEST,
        REJECT_REQUEST,
        WITHDRAW_REQUEST,
        VIEW_HISTORY,
    }
)

# Dotted names used by dashboards and API clients.
ACTION_ALIASES: Dict[str, str] = {
    "procurement.approve": PROCUREMENT_APPROVE,
    "procurement.reject": PROCUREMENT_REJECT,
    "legal.approve": LEGAL_APPROVE,
    "legal.reject": LEGAL_REJECT,
    "provider.submitOffer": SUBMIT_OFFER,
    "provider.withdrawOffer": WITHDRAW_OFFER,
    "coordinator.selectOffer": SELECT_OFFER,
    "admin.finalApprove": FINAL_APPROVE,
    "admin.finalReject": FINAL_REJECT,
    "provider.createRequest": CREATE_REQUEST,
    "client.acceptRequest": ACCEPT_REQUEST,
    "client.rejectRequest": REJECT_REQUEST,
    "provider.withdrawRequest": WITHDRAW_REQUEST,
}

_EDITABLE_BY_ADMIN = frozenset({st.DRAFT, st.PENDING_PROCUREMENT, st.PENDING_LEGAL})
_REMOVABLE = frozenset({st.DRAFT, st.PENDING_PROCUREMENT})
_ANY_STATUS = st.ALL_CONTRACT_STATUSES

# role -> action -> statuses the action may start from.
CAPABILITIES: Dict[str, Dict[str, FrozenSet[str]]] = {
    CLIENT: {
        SUBMIT: frozenset({st.DRAFT}),
        EDIT: frozenset({st.DRAFT}),
        DELETE: _REMOVABLE,
        CANCEL: frozenset({st.DRAFT, st.PENDING_PROCUREMENT}),
        ACCEPT_REQUEST: frozenset({st.FINAL_APPROVED}),
        REJECT_REQUEST: frozenset({st.FINAL_APPROVED}),
        VIEW_HISTORY: _ANY_STATUS,
    },
    PROCUREMENT_MANAGER: {
        PROCUREMENT_APPROVE: frozenset({st.PENDING_PROCUREMENT}),
        PROCUREMENT_REJECT: frozenset({st.PENDING_PROCUREMENT}),
        EDIT: frozenset({st.PENDING_PROCUREMENT}),
        VIEW_HISTORY: _ANY_STATUS,
    },
    LEGAL_COUNSEL: {
        LEGAL_APPROVE: frozenset({st.PENDING_LEGAL}),
        LEGAL_REJECT: frozenset({st.PENDING_LEGAL}),
        EDIT: frozenset({st.PENDING_LEGAL}),
        VIEW_HISTORY: _ANY_STATUS,
    },
    CONTRACT_COORDINATOR: {
        SELECT_OFFER: frozenset({st.OPEN_FOR_OFFERS}),
        VIEW_HISTORY: _ANY_STATUS,
    },
    SERVICE_PROVIDER: {
        SUBMIT_OFFER: frozenset({st.OPEN_FOR_OFFERS}),
        WITHDRAW_OFFER: frozenset({st.OPEN_FOR_OFFERS}),
        CREATE_REQUEST: frozenset({st.FINAL_APPROVED}),
        WITHDRAW_REQUEST: _ANY_STATUS,
    },
    ADMIN: {
        FINAL_APPROVE: frozenset({st.PENDING_FINAL_APPROVAL}),
        FINAL_REJECT: frozenset({st.PENDING_FINAL_APPROVAL}),
        EDIT: _EDITABLE_BY_ADMIN,
        DELETE: _REMOVABLE,
        CANCEL: st.PRE_FINAL_STATUSES,
        ACCEPT_REQUEST: frozenset({st.FINAL_APPROVED}),
        REJECT_REQUEST: frozenset({st.FINAL_APPROVED}),
        VIEW_HISTORY: _ANY_STATUS,
    },
}

# (role, action) pairs that additionally require the actor to be the owning party:
# the contract's client, the offer's/request's provider, or the assigned provider.
OWNER_REQUIRED: FrozenSet[tuple[str, str]] = frozenset(
    {
        (CLIENT, SUBMIT),
        (CLIENT, EDIT),
        (CLIENT, DELETE),
        (CLIENT, CANCEL),
        (CLIENT, ACCEPT_REQUEST),
        (CLIENT, REJECT_REQUEST),
        (CLIENT, VIEW_HISTORY),
        (SERVICE_PROVIDER, WITHDRAW_OFFER),
        (SERVICE_PROVIDER, CREATE_REQUEST),
        (SERVICE_PROVIDER, WITHDRAW_REQUEST),
    }
)

# Initial status per creating role.
CREATE_TARGETS: Dict[str, str] = {
    CLIENT: st.DRAFT,
    PROCUREMENT_MANAGER: st.PENDING_PROCUREMENT,
}

# Actions that move the contract to a new status.
TRANSITION_TARGETS: Dict[str, str] = {
    SUBMIT: st.PENDING_PROCUREMENT,
    PROCUREMENT_APPROVE: st.PENDING_LEGAL,
    PROCUREMENT_REJECT: st.REJECTED,
    LEGAL_APPROVE: st.OPEN_FOR_OFFERS,
    LEGAL_REJECT: st.REJECTED,
    SELECT_OFFER: st.PENDING_FINAL_APPROVAL,
    FINAL_APPROVE: st.FINAL_APPROVED,
    FINAL_REJECT: st.REJECTED,
    CANCEL: st.CANCELLED,
}


def normalize_action(action: str | None) -> str:
    raw = str(action or "").strip()
    resolved = ACTION_ALIASES.get(raw, raw.replace("-", "_").replace(".", "_").lower())
    if resolved in ACTIONS:
        return resolved
    raise UserActionError(code="action_unknown", message_key="action_unknown", payload={"action": raw})


def allowed_from(role: str | None, action: str) -> FrozenSet[str]:
    return CAPABILITIES.get(str(role or ""), {}).get(action, frozenset())


def requires_owner(role: str | None, action: str) -> bool:
    return (str(role or ""), action) in OWNER_REQUIRED


def role_may_perform(role: str | None, action: str, is_owner: bool = False) -> bool:
    if action == CREATE:
        return str(role or "") in CREATE_TARGETS
    if action not in CAPABILITIES.get(str(role or ""), {}):
        return False
    if requires_owner(role, action) and not is_owner:
        return False
    return True


def is_allowed(role: str | None, action: str, current_status: str | None, is_owner: bool = False) -> bool:
    if not role_may_perform(role, action, is_owner):
        return False
    if action == CREATE:
        return current_status is None
    return str(current_status or "") in allowed_from(role, action)


def enforce(
    role: str | None,
    action: str,
    current_status: str | None,
    is_owner: bool = False,
    *,
    state_error: Type[AppError] = InvalidTransitionError,
) -> None:
    """Raise ForbiddenError for role/ownership denials and ``state_error`` for status mismatches."""
    if not role_may_perform(role, action, is_owner):
        raise ForbiddenError(payload={"action": action, "role": role})
    if is_allowed(role, action, current_status, is_owner):
        return
    raise state_error(
        payload={
            "action": action,
            "status": current_status,
            "allowed_actions": allowed_actions(role, current_status, is_owner),
        }
    )


def transition_target(action: str) -> str | None:
    return TRANSITION_TARGETS.get(action)


def create_target(role: str | None) -> str | None:
    return CREATE_TARGETS.get(str(role or ""))


def allowed_actions(role: str | None, status: str | None, is_owner: bool = False) -> List[str]:
    actions = []
    for action, statuses in CAPABILITIES.get(str(role or ""), {}).items():
        if str(status or "") not in statuses:
            continue
        if requires_owner(role, action) and not is_owner:
            continue
        actions.append(action)
    return sorted(actions)


def frontend_bundle() -> Dict[str, object]:
    return {
        "capabilities": {
            role: {action: sorted(statuses) for action, statuses in actions.items()}
            for role, actions in CAPABILITIES.items()
        },
        "transitions": dict(TRANSITION_TARGETS),
        "create_targets": dict(CREATE_TARGETS),
        "owner_required": sorted(f"{role}:{action}" for role, action in OWNER_REQUIRED),
    }
