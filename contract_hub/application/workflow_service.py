from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict

from contract_hub.application.audit import ENTITY_CONTRACT, ENTITY_OFFER, AuditTrail
from contract_hub.application.engagement_service import EngagementService
from contract_hub.application.offer_service import OfferService
from contract_hub.application.serializers import is_contract_owner, serialize_contract
from contract_hub.application.transitions import load_contract, log_transition, tracked, write_transition
from contract_hub.core import ContractCreated, ContractTransitioned, EventBus, get_event_bus
from contract_hub.domain import statuses as st
from contract_hub.domain.inputs import Actor, ServiceOutput, WorkflowRequest
from contract_hub.domain.validation import optional_notes, require_reason, validate_contract_payload
from contract_hub.domain.workflow_log import (
    DECISION_APPROVED,
    DECISION_REJECTED,
    STAGE_FINAL_APPROVAL,
    STAGE_LEGAL,
    STAGE_PROCUREMENT,
    StageDecision,
    WorkflowLog,
)
from contract_hub.errors import (
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    UserActionError,
    ValidationError,
)
from contract_hub.infrastructure.repositories import ContractRepository, OfferRepository, UserRepository
from contract_hub.infrastructure.repositories.base import utc_now_iso
from contract_hub.observability import observe_workflow_transition
from contract_hub.policies import CLIENT, PROCUREMENT_MANAGER, SERVICE_PROVIDER
from contract_hub.ui_strings import success_message
from contract_hub.workflow import flow_policy
from contract_hub.workflow.reference import DEFAULT_PREFIX, next_reference_number


LOGGER = logging.getLogger("contract_hub")

# Stage decision actions: action -> (workflow stage, decision, success message key).
STAGE_ACTIONS: Dict[str, tuple[str, str, str]] = {
    flow_policy.PROCUREMENT_APPROVE: (STAGE_PROCUREMENT, DECISION_APPROVED, "procurement_approved"),
    flow_policy.PROCUREMENT_REJECT: (STAGE_PROCUREMENT, DECISION_REJECTED, "procurement_rejected"),
    flow_policy.LEGAL_APPROVE: (STAGE_LEGAL, DECISION_APPROVED, "legal_approved"),
    flow_policy.LEGAL_REJECT: (STAGE_LEGAL, DECISION_REJECTED, "legal_rejected"),
    flow_policy.FINAL_APPROVE: (STAGE_FINAL_APPROVAL, DECISION_APPROVED, "final_approved"),
    flow_policy.FINAL_REJECT: (STAGE_FINAL_APPROVAL, DECISION_REJECTED, "final_rejected"),
}

PROTECTED_FIELDS = ("reference_number", "status", "workflow", "client_id", "assigned_provider_id", "version")
CANCELLATION_OFFER_REASON = "Contract was cancelled"


def _today() -> date:
    return datetime.now(timezone.utc).date()


class WorkflowService:
    """Contract lifecycle: creation, edits, stage decisions and cancellation.

    Every state change runs in one write transaction: the contract is re-read,
    the capability table is checked against the persisted status, and the row
    is written with a status+version guard. Domain events go out after commit.
    """

    def __init__(
        self,
        contracts: ContractRepository | None = None,
        offers: OfferRepository | None = None,
        users: UserRepository | None = None,
        audit: AuditTrail | None = None,
        event_bus: EventBus | None = None,
        offer_service: OfferService | None = None,
        engagement_service: EngagementService | None = None,
        *,
        reference_prefix: str = DEFAULT_PREFIX,
        default_currency: str = "EUR",
        today_fn: Callable[[], date] = _today,
    ) -> None:
        self.contracts = contracts or ContractRepository()
        self.offers = offers or OfferRepository()
        self.users = users or UserRepository()
        self.audit = audit or AuditTrail()
        self.event_bus = event_bus or get_event_bus()
        self.offer_service = offer_service or OfferService(
            contracts=self.contracts,
            offers=self.offers,
            audit=self.audit,
            event_bus=self.event_bus,
            default_currency=default_currency,
        )
        self.engagement_service = engagement_service or EngagementService(
            contracts=self.contracts,
            audit=self.audit,
            event_bus=self.event_bus,
            default_currency=default_currency,
        )
        self.reference_prefix = reference_prefix
        self.default_currency = default_currency
        self.today_fn = today_fn

    def _publish_transition(self, contract: Dict[str, Any], *, action: str, from_status: str, actor: Actor, reason=None):
        log_transition(contract, action=action, from_status=from_status, actor=actor)
        self.event_bus.publish(
            ContractTransitioned(
                contract_id=int(contract["id"]),
                reference_number=contract["reference_number"],
                action=action,
                from_status=from_status,
                to_status=contract["status"],
                reason=reason,
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )

    def _resolve_client_id(self, db, actor: Actor, payload: Dict[str, Any]) -> int | None:
        if actor.role == CLIENT:
            return actor.user_id
        raw = payload.get("client_id")
        if raw in (None, ""):
            return None
        try:
            client_id = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(fields={"client_id": ["Client id must be an integer"]})
        client = self.users.get_by_id(db, client_id)
        if client is None or client["role"] != CLIENT or not client["is_active"]:
            raise NotFoundError(message_key="client_not_found", payload={"client_id": client_id})
        return client_id

    def create_contract(self, db, actor: Actor, payload: Dict[str, Any]) -> ServiceOutput:
        with tracked(flow_policy.CREATE):
            initial_status = flow_policy.create_target(actor.role)
            if initial_status is None:
                raise ForbiddenError(payload={"action": flow_policy.CREATE, "role": actor.role})
            values = validate_contract_payload(
                payload,
                today=self.today_fn(),
                default_currency=self.default_currency,
            )
            with db.transaction():
                client_id = self._resolve_client_id(db, actor, payload)
                reference_number = next_reference_number(db, prefix=self.reference_prefix)
                contract_id = self.contracts.create(
                    db,
                    {
                        **values,
                        "reference_number": reference_number,
                        "status": initial_status,
                        "workflow": WorkflowLog().to_json(),
                        "client_id": client_id,
                        "created_by": actor.user_id,
                        "version": 1,
                    },
                )
                self.audit.record(
                    db,
                    entity=ENTITY_CONTRACT,
                    entity_id=contract_id,
                    action=flow_policy.CREATE,
                    actor=actor,
                    to_status=initial_status,
                    details={"reference_number": reference_number},
                )
                contract = load_contract(db, self.contracts, contract_id)

        observe_workflow_transition(flow_policy.CREATE, "success")
        LOGGER.info(
            "contract_created",
            extra={
                "contract_id": contract_id,
                "reference_number": reference_number,
                "status": initial_status,
                "actor_id": actor.user_id,
                "actor_role": actor.role,
            },
        )
        self.event_bus.publish(
            ContractCreated(
                contract_id=contract_id,
                reference_number=reference_number,
                status=initial_status,
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(
            payload={"contract": serialize_contract(contract, actor=actor), "message": success_message("contract_created")},
            status_code=201,
        )

    def ensure_visible(self, contract: Dict[str, Any], actor: Actor) -> None:
        if actor.role == CLIENT and not is_contract_owner(contract, actor):
            raise ForbiddenError(payload={"contract_id": contract["id"]})
        if actor.role == SERVICE_PROVIDER:
            if contract["status"] != st.OPEN_FOR_OFFERS and not is_contract_owner(contract, actor):
                raise ForbiddenError(payload={"contract_id": contract["id"]})

    def get_contract(self, db, actor: Actor, contract_id: int) -> ServiceOutput:
        contract = load_contract(db, self.contracts, contract_id)
        self.ensure_visible(contract, actor)
        payload: Dict[str, Any] = {"contract": serialize_contract(contract, actor=actor)}
        offers = self.offer_service.offers_for_detail(db, actor, contract)
        if offers is not None:
            payload["offers"] = offers
        return ServiceOutput(payload=payload)

    def edit_contract(self, db, actor: Actor, contract_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        with tracked(flow_policy.EDIT), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            is_owner = is_contract_owner(contract, actor)
            if contract["status"] == st.FINAL_APPROVED and flow_policy.role_may_perform(
                actor.role, flow_policy.EDIT, is_owner
            ):
                raise InvalidTransitionError(
                    message_key="contract_frozen",
                    payload={"action": flow_policy.EDIT, "status": contract["status"]},
                )
            flow_policy.enforce(actor.role, flow_policy.EDIT, contract["status"], is_owner)

            protected = [name for name in PROTECTED_FIELDS if name in payload]
            if protected:
                raise ValidationError(fields={name: ["Field cannot be changed"] for name in protected})
            changes = validate_contract_payload(
                payload,
                existing=contract,
                today=self.today_fn(),
                default_currency=self.default_currency,
            )
            changes = {key: value for key, value in changes.items() if contract.get(key) != value}
            if not changes:
                raise UserActionError(code="no_changes", message_key="no_changes")
            if not self.contracts.guarded_update(
                db,
                contract_id,
                expected_status=contract["status"],
                expected_version=int(contract["version"]),
                changes=changes,
            ):
                raise InvalidTransitionError(payload={"action": flow_policy.EDIT, "status": contract["status"]})
            self.audit.record(
                db,
                entity=ENTITY_CONTRACT,
                entity_id=contract_id,
                action=flow_policy.EDIT,
                actor=actor,
                from_status=contract["status"],
                to_status=contract["status"],
                details={"fields": sorted(changes)},
            )
            contract = load_contract(db, self.contracts, contract_id)

        observe_workflow_transition(flow_policy.EDIT, "success")
        return ServiceOutput(
            payload={"contract": serialize_contract(contract, actor=actor), "message": success_message("contract_updated")}
        )

    def delete_contract(self, db, actor: Actor, contract_id: int) -> ServiceOutput:
        with tracked(flow_policy.DELETE), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            flow_policy.enforce(actor.role, flow_policy.DELETE, contract["status"], is_contract_owner(contract, actor))
            now = utc_now_iso()
            if not self.contracts.guarded_update(
                db,
                contract_id,
                expected_status=contract["status"],
                expected_version=int(contract["version"]),
                changes={"is_deleted": 1, "deleted_at": now, "deleted_by": actor.user_id},
            ):
                raise InvalidTransitionError(payload={"action": flow_policy.DELETE, "status": contract["status"]})
            self.audit.record(
                db,
                entity=ENTITY_CONTRACT,
                entity_id=contract_id,
                action=flow_policy.DELETE,
                actor=actor,
                from_status=contract["status"],
                to_status=contract["status"],
                occurred_at=now,
            )

        observe_workflow_transition(flow_policy.DELETE, "success")
        LOGGER.info("contract_deleted", extra={"contract_id": contract_id, "actor_id": actor.user_id})
        return ServiceOutput(
            payload={"contract_id": contract_id, "deleted": True, "message": success_message("contract_deleted")}
        )

    def submit(self, db, actor: Actor, contract_id: int) -> ServiceOutput:
        with tracked(flow_policy.SUBMIT), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            from_status = contract["status"]
            flow_policy.enforce(actor.role, flow_policy.SUBMIT, from_status, is_contract_owner(contract, actor))
            contract = write_transition(
                db,
                self.contracts,
                self.audit,
                contract,
                action=flow_policy.SUBMIT,
                actor=actor,
                to_status=flow_policy.transition_target(flow_policy.SUBMIT),
            )

        self._publish_transition(contract, action=flow_policy.SUBMIT, from_status=from_status, actor=actor)
        return ServiceOutput(
            payload={"contract": serialize_contract(contract, actor=actor), "message": success_message("contract_submitted")}
        )

    def decide_stage(self, db, actor: Actor, contract_id: int, action: str, payload: Dict[str, Any]) -> ServiceOutput:
        """Record an approve/reject decision for the procurement, legal or final stage."""
        if action not in STAGE_ACTIONS:
            raise UserActionError(code="action_unknown", message_key="action_unknown", payload={"action": action})
        stage, decision, message_key = STAGE_ACTIONS[action]

        with tracked(action), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            from_status = contract["status"]
            flow_policy.enforce(actor.role, action, from_status, is_contract_owner(contract, actor))
            reason = require_reason(payload) if decision == DECISION_REJECTED else None
            notes = optional_notes(payload)
            now = utc_now_iso()

            log = WorkflowLog.from_json(contract["workflow"]).append(
                StageDecision(
                    stage=stage,
                    decision=decision,
                    actor_id=actor.user_id,
                    actor_role=actor.role,
                    decided_at=now,
                    notes=notes,
                    reason=reason,
                )
            )
            changes: Dict[str, Any] = {"workflow": log.to_json()}
            details: Dict[str, Any] = {"stage": stage, "decision": decision}
            if action == flow_policy.FINAL_APPROVE:
                changes["assigned_provider_id"] = self._selected_provider(db, log, contract_id)
                details["assigned_provider_id"] = changes["assigned_provider_id"]

            contract = write_transition(
                db,
                self.contracts,
                self.audit,
                contract,
                action=action,
                actor=actor,
                to_status=flow_policy.transition_target(action),
                changes=changes,
                reason=reason,
                details=details,
                occurred_at=now,
            )

        self._publish_transition(contract, action=action, from_status=from_status, actor=actor, reason=reason)
        return ServiceOutput(
            payload={"contract": serialize_contract(contract, actor=actor), "message": success_message(message_key)}
        )

    def _selected_provider(self, db, log: WorkflowLog, contract_id: int) -> int:
        offer_id = log.selected_offer_id
        offer = self.offers.get_by_id(db, offer_id) if offer_id is not None else None
        if offer is None or int(offer["contract_id"]) != int(contract_id) or offer["status"] != st.OFFER_SELECTED_STATUS:
            raise InvalidStateError(
                message_key="offer_not_found",
                payload={"contract_id": contract_id, "selected_offer_id": offer_id},
            )
        return int(offer["provider_id"])

    def cancel(self, db, actor: Actor, contract_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        with tracked(flow_policy.CANCEL), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            from_status = contract["status"]
            flow_policy.enforce(actor.role, flow_policy.CANCEL, from_status, is_contract_owner(contract, actor))
            reason = require_reason(payload)
            now = utc_now_iso()

            rejected_ids = self.offers.reject_pending(
                db,
                contract_id,
                reason=CANCELLATION_OFFER_REASON,
                decided_by=actor.user_id,
                decided_at=now,
            )
            for offer_id in rejected_ids:
                self.audit.record(
                    db,
                    entity=ENTITY_OFFER,
                    entity_id=offer_id,
                    action="offer_rejected",
                    actor=actor,
                    from_status=st.OFFER_PENDING,
                    to_status=st.OFFER_REJECTED,
                    reason=CANCELLATION_OFFER_REASON,
                    occurred_at=now,
                )
            contract = write_transition(
                db,
                self.contracts,
                self.audit,
                contract,
                action=flow_policy.CANCEL,
                actor=actor,
                to_status=flow_policy.transition_target(flow_policy.CANCEL),
                changes={"cancellation_reason": reason, "cancelled_at": now},
                reason=reason,
                details={"rejected_offer_ids": rejected_ids},
                occurred_at=now,
            )

        self._publish_transition(contract, action=flow_policy.CANCEL, from_status=from_status, actor=actor, reason=reason)
        return ServiceOutput(
            payload={
                "contract": serialize_contract(contract, actor=actor),
                "rejected_offer_ids": rejected_ids,
                "message": success_message("contract_cancelled"),
            }
        )

    def history(self, db, actor: Actor, contract_id: int) -> ServiceOutput:
        contract = load_contract(db, self.contracts, contract_id)
        flow_policy.enforce(
            actor.role,
            flow_policy.VIEW_HISTORY,
            contract["status"],
            is_contract_owner(contract, actor),
        )
        return ServiceOutput(
            payload={
                "contract_id": contract_id,
                "reference_number": contract["reference_number"],
                "status": contract["status"],
                "workflow": WorkflowLog.from_json(contract["workflow"]).to_dict(),
                "events": self.audit.contract_history(db, contract_id),
            }
        )

    def dispatch(self, db, workflow_request: WorkflowRequest) -> ServiceOutput:
        """Single entry point for ``{contract_id, action, actor, payload}`` requests."""
        action = flow_policy.normalize_action(workflow_request.action)
        actor = workflow_request.actor
        payload = dict(workflow_request.payload or {})
        contract_id = workflow_request.contract_id

        if action == flow_policy.CREATE:
            return self.create_contract(db, actor, payload)
        if action in {flow_policy.WITHDRAW_OFFER, flow_policy.ACCEPT_REQUEST, flow_policy.REJECT_REQUEST, flow_policy.WITHDRAW_REQUEST}:
            return self._dispatch_by_child_id(db, action, actor, payload)
        if contract_id is None:
            raise ValidationError(fields={"contract_id": ["Contract id is required"]})

        if action == flow_policy.SUBMIT:
            return self.submit(db, actor, contract_id)
        if action in STAGE_ACTIONS:
            return self.decide_stage(db, actor, contract_id, action, payload)
        if action == flow_policy.CANCEL:
            return self.cancel(db, actor, contract_id, payload)
        if action == flow_policy.EDIT:
            return self.edit_contract(db, actor, contract_id, payload)
        if action == flow_policy.DELETE:
            return self.delete_contract(db, actor, contract_id)
        if action == flow_policy.SUBMIT_OFFER:
            return self.offer_service.submit_offer(db, actor, contract_id, payload)
        if action == flow_policy.SELECT_OFFER:
            offer_id = _required_int(payload, "offer_id")
            return self.offer_service.select_offer(db, actor, contract_id, offer_id, payload)
        if action == flow_policy.CREATE_REQUEST:
            return self.engagement_service.create_request(db, actor, contract_id, payload)
        return self.history(db, actor, contract_id)

    def _dispatch_by_child_id(self, db, action: str, actor: Actor, payload: Dict[str, Any]) -> ServiceOutput:
        if action == flow_policy.WITHDRAW_OFFER:
            return self.offer_service.withdraw_offer(db, actor, _required_int(payload, "offer_id"))
        request_id = _required_int(payload, "request_id")
        if action == flow_policy.ACCEPT_REQUEST:
            return self.engagement_service.accept_request(db, actor, request_id, payload)
        if action == flow_policy.REJECT_REQUEST:
            return self.engagement_service.reject_request(db, actor, request_id, payload)
        return self.engagement_service.withdraw_request(db, actor, request_id)


def _required_int(payload: Dict[str, Any], field: str) -> int:
    try:
        return int(payload[field])
    except (KeyError, TypeError, ValueError):
        raise ValidationError(fields={field: [f"{field} is required"]})
