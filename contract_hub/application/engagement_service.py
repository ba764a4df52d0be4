from __future__ import annotations

import logging
from typing import Any, Dict

from contract_hub.application.audit import ENTITY_REQUEST, AuditTrail
from contract_hub.application.serializers import is_contract_owner, pagination_meta, serialize_request
from contract_hub.application.transitions import load_contract, tracked
from contract_hub.core import EngagementRequestCreated, EngagementRequestDecided, EventBus, get_event_bus
from contract_hub.domain import statuses as st
from contract_hub.domain.inputs import Actor, ServiceOutput
from contract_hub.domain.validation import optional_notes, require_reason, validate_request_payload
from contract_hub.errors import (
    DuplicateRequestError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from contract_hub.infrastructure.repositories import ContractRepository, EngagementRequestRepository
from contract_hub.infrastructure.repositories.base import utc_now_iso
from contract_hub.observability import observe_workflow_transition
from contract_hub.policies import ADMIN, CLIENT, CONTRACT_COORDINATOR, SERVICE_PROVIDER
from contract_hub.ui_strings import success_message
from contract_hub.workflow import flow_policy


LOGGER = logging.getLogger("contract_hub")

SIBLING_REJECTION_REASON = "Another request was accepted"


class EngagementService:
    """Engagement requests raised by the assigned provider on a final-approved contract."""

    def __init__(
        self,
        contracts: ContractRepository | None = None,
        requests: EngagementRequestRepository | None = None,
        audit: AuditTrail | None = None,
        event_bus: EventBus | None = None,
        *,
        default_currency: str = "EUR",
    ) -> None:
        self.contracts = contracts or ContractRepository()
        self.requests = requests or EngagementRequestRepository()
        self.audit = audit or AuditTrail()
        self.event_bus = event_bus or get_event_bus()
        self.default_currency = default_currency

    def _load_request(self, db, request_id: int) -> Dict[str, Any]:
        engagement_request = self.requests.get_by_id(db, request_id)
        if engagement_request is None:
            raise NotFoundError(message_key="request_not_found", payload={"request_id": request_id})
        return engagement_request

    @staticmethod
    def _require_pending(engagement_request: Dict[str, Any]) -> None:
        if engagement_request["status"] != st.REQUEST_PENDING:
            raise InvalidStateError(
                message_key="request_not_pending",
                payload={"request_id": engagement_request["id"], "status": engagement_request["status"]},
            )

    def create_request(self, db, actor: Actor, contract_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        with tracked(flow_policy.CREATE_REQUEST), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            flow_policy.enforce(
                actor.role,
                flow_policy.CREATE_REQUEST,
                contract["status"],
                is_contract_owner(contract, actor),
                state_error=InvalidStateError,
            )
            existing = self.requests.find_pending_for_provider(db, contract_id, actor.user_id)
            if existing is not None:
                raise DuplicateRequestError(payload={"request_id": existing["id"], "contract_id": contract_id})
            values = validate_request_payload(payload, default_currency=self.default_currency)
            request_id = self.requests.create(
                db, {**values, "contract_id": contract_id, "provider_id": actor.user_id}
            )
            self.audit.record(
                db,
                entity=ENTITY_REQUEST,
                entity_id=request_id,
                action=flow_policy.CREATE_REQUEST,
                actor=actor,
                to_status=st.REQUEST_PENDING,
                details={"contract_id": contract_id, "service_name": values["service_name"]},
            )
            engagement_request = self.requests.get_by_id(db, request_id)

        observe_workflow_transition(flow_policy.CREATE_REQUEST, "success")
        self.event_bus.publish(
            EngagementRequestCreated(
                contract_id=contract_id,
                request_id=request_id,
                provider_id=actor.user_id,
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(
            payload={"request": serialize_request(engagement_request), "message": success_message("request_created")},
            status_code=201,
        )

    def accept_request(self, db, actor: Actor, request_id: int, payload: Dict[str, Any] | None = None) -> ServiceOutput:
        payload = payload or {}
        with tracked(flow_policy.ACCEPT_REQUEST), db.transaction():
            engagement_request = self._load_request(db, request_id)
            contract_id = int(engagement_request["contract_id"])
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            flow_policy.enforce(
                actor.role,
                flow_policy.ACCEPT_REQUEST,
                contract["status"],
                is_contract_owner(contract, actor),
                state_error=InvalidStateError,
            )
            self._require_pending(engagement_request)
            notes = optional_notes(payload)
            now = utc_now_iso()
            if not self.requests.accept(db, request_id, decided_by=actor.user_id, notes=notes, decided_at=now):
                raise InvalidStateError(message_key="request_not_pending", payload={"request_id": request_id})
            self.audit.record(
                db,
                entity=ENTITY_REQUEST,
                entity_id=request_id,
                action=flow_policy.ACCEPT_REQUEST,
                actor=actor,
                from_status=st.REQUEST_PENDING,
                to_status=st.REQUEST_ACCEPTED,
                reason=notes,
                occurred_at=now,
            )
            rejected_ids = self.requests.reject_other_pending(
                db,
                contract_id,
                except_request_id=request_id,
                decided_by=actor.user_id,
                reason=SIBLING_REJECTION_REASON,
                decided_at=now,
            )
            for rejected_id in rejected_ids:
                self.audit.record(
                    db,
                    entity=ENTITY_REQUEST,
                    entity_id=rejected_id,
                    action="request_rejected",
                    actor=actor,
                    from_status=st.REQUEST_PENDING,
                    to_status=st.REQUEST_REJECTED,
                    reason=SIBLING_REJECTION_REASON,
                    occurred_at=now,
                )
            engagement_request = self.requests.get_by_id(db, request_id)

        observe_workflow_transition(flow_policy.ACCEPT_REQUEST, "success")
        self.event_bus.publish(
            EngagementRequestDecided(
                contract_id=contract_id,
                request_id=request_id,
                status=st.REQUEST_ACCEPTED,
                rejected_request_ids=tuple(rejected_ids),
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(
            payload={
                "request": serialize_request(engagement_request),
                "rejected_request_ids": rejected_ids,
                "message": success_message("request_accepted"),
            }
        )

    def reject_request(self, db, actor: Actor, request_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        with tracked(flow_policy.REJECT_REQUEST), db.transaction():
            engagement_request = self._load_request(db, request_id)
            contract_id = int(engagement_request["contract_id"])
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            flow_policy.enforce(
                actor.role,
                flow_policy.REJECT_REQUEST,
                contract["status"],
                is_contract_owner(contract, actor),
                state_error=InvalidStateError,
            )
            self._require_pending(engagement_request)
            reason = require_reason(payload)
            now = utc_now_iso()
            if not self.requests.reject(db, request_id, decided_by=actor.user_id, reason=reason, decided_at=now):
                raise InvalidStateError(message_key="request_not_pending", payload={"request_id": request_id})
            self.audit.record(
                db,
                entity=ENTITY_REQUEST,
                entity_id=request_id,
                action=flow_policy.REJECT_REQUEST,
                actor=actor,
                from_status=st.REQUEST_PENDING,
                to_status=st.REQUEST_REJECTED,
                reason=reason,
                occurred_at=now,
            )
            engagement_request = self.requests.get_by_id(db, request_id)

        observe_workflow_transition(flow_policy.REJECT_REQUEST, "success")
        self.event_bus.publish(
            EngagementRequestDecided(
                contract_id=contract_id,
                request_id=request_id,
                status=st.REQUEST_REJECTED,
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(
            payload={"request": serialize_request(engagement_request), "message": success_message("request_rejected")}
        )

    def withdraw_request(self, db, actor: Actor, request_id: int) -> ServiceOutput:
        with tracked(flow_policy.WITHDRAW_REQUEST), db.transaction():
            engagement_request = self._load_request(db, request_id)
            contract = load_contract(db, self.contracts, int(engagement_request["contract_id"]))
            flow_policy.enforce(
                actor.role,
                flow_policy.WITHDRAW_REQUEST,
                contract["status"],
                int(engagement_request["provider_id"]) == int(actor.user_id),
                state_error=InvalidStateError,
            )
            self._require_pending(engagement_request)
            now = utc_now_iso()
            if not self.requests.withdraw(db, request_id, withdrawn_at=now):
                raise InvalidStateError(message_key="request_not_pending", payload={"request_id": request_id})
            self.audit.record(
                db,
                entity=ENTITY_REQUEST,
                entity_id=request_id,
                action=flow_policy.WITHDRAW_REQUEST,
                actor=actor,
                from_status=st.REQUEST_PENDING,
                to_status=st.REQUEST_WITHDRAWN,
                occurred_at=now,
            )
            engagement_request = self.requests.get_by_id(db, request_id)

        observe_workflow_transition(flow_policy.WITHDRAW_REQUEST, "success")
        self.event_bus.publish(
            EngagementRequestDecided(
                contract_id=int(engagement_request["contract_id"]),
                request_id=request_id,
                status=st.REQUEST_WITHDRAWN,
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(
            payload={"request": serialize_request(engagement_request), "message": success_message("request_withdrawn")}
        )

    def list_requests(
        self,
        db,
        actor: Actor,
        contract_id: int,
        *,
        status: str | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> ServiceOutput:
        contract = load_contract(db, self.contracts, contract_id)
        provider_id = None
        if actor.role == SERVICE_PROVIDER:
            provider_id = actor.user_id
        elif actor.role == CLIENT:
            if not is_contract_owner(contract, actor):
                raise ForbiddenError(payload={"contract_id": contract_id})
        elif actor.role not in {ADMIN, CONTRACT_COORDINATOR}:
            raise ForbiddenError(payload={"contract_id": contract_id})
        if status and status not in st.REQUEST_STATUSES:
            raise ValidationError(fields={"status": ["Invalid request status"]})

        rows, total = self.requests.list_page(
            db,
            contract_id=contract_id,
            status=status,
            provider_id=provider_id,
            sort=sort,
            page=page,
            limit=limit,
        )
        return ServiceOutput(
            payload={
                "items": [serialize_request(row) for row in rows],
                "pagination": pagination_meta(page=page, limit=limit, total=total),
            }
        )

    def list_my_requests(
        self,
        db,
        actor: Actor,
        *,
        status: str | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> ServiceOutput:
        """A provider's own requests across every contract, newest first."""
        if actor.role != SERVICE_PROVIDER:
            raise ForbiddenError(payload={"role": actor.role})
        if status and status not in st.REQUEST_STATUSES:
            raise ValidationError(fields={"status": ["Invalid request status"]})

        rows, total = self.requests.list_page(
            db,
            provider_id=actor.user_id,
            status=status,
            sort=sort,
            page=page,
            limit=limit,
        )
        summaries: Dict[int, Dict[str, Any] | None] = {}
        items = []
        for row in rows:
            contract_id = int(row["contract_id"])
            if contract_id not in summaries:
                contract = self.contracts.get_by_id(db, contract_id, include_deleted=True)
                summaries[contract_id] = (
                    {
                        "id": contract_id,
                        "reference_number": contract["reference_number"],
                        "title": contract["title"],
                        "status": contract["status"],
                    }
                    if contract
                    else None
                )
            item = serialize_request(row)
            item["contract"] = summaries[contract_id]
            items.append(item)
        return ServiceOutput(
            payload={"items": items, "pagination": pagination_meta(page=page, limit=limit, total=total)}
        )
