from __future__ import annotations

import logging
from typing import Any, Dict

from contract_hub.application.audit import ENTITY_OFFER, AuditTrail
from contract_hub.application.serializers import (
    is_contract_owner,
    pagination_meta,
    serialize_contract,
    serialize_offer,
)
from contract_hub.application.transitions import load_contract, log_transition, tracked, write_transition
from contract_hub.core import ContractTransitioned, EventBus, OfferSelected, OfferSubmitted, OfferWithdrawn, get_event_bus
from contract_hub.domain import statuses as st
from contract_hub.domain.inputs import Actor, ServiceOutput
from contract_hub.domain.validation import optional_notes, validate_offer_payload
from contract_hub.domain.workflow_log import DECISION_SELECTED, STAGE_COORDINATOR, StageDecision, WorkflowLog
from contract_hub.errors import (
    DuplicateOfferError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from contract_hub.infrastructure.repositories import ContractRepository, OfferRepository
from contract_hub.infrastructure.repositories.base import utc_now_iso
from contract_hub.policies import ADMIN, CLIENT, CONTRACT_COORDINATOR, SERVICE_PROVIDER
from contract_hub.ui_strings import success_message
from contract_hub.workflow import flow_policy


LOGGER = logging.getLogger("contract_hub")

SIBLING_REJECTION_REASON = "Another offer was selected"


class OfferService:
    """Offer submission, withdrawal and the coordinator's atomic selection."""

    def __init__(
        self,
        contracts: ContractRepository | None = None,
        offers: OfferRepository | None = None,
        audit: AuditTrail | None = None,
        event_bus: EventBus | None = None,
        *,
        default_currency: str = "EUR",
    ) -> None:
        self.contracts = contracts or ContractRepository()
        self.offers = offers or OfferRepository()
        self.audit = audit or AuditTrail()
        self.event_bus = event_bus or get_event_bus()
        self.default_currency = default_currency

    def _load_offer(self, db, offer_id: int) -> Dict[str, Any]:
        offer = self.offers.get_by_id(db, offer_id)
        if offer is None:
            raise NotFoundError(message_key="offer_not_found", payload={"offer_id": offer_id})
        return offer

    def submit_offer(self, db, actor: Actor, contract_id: int, payload: Dict[str, Any]) -> ServiceOutput:
        with tracked(flow_policy.SUBMIT_OFFER), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            flow_policy.enforce(
                actor.role,
                flow_policy.SUBMIT_OFFER,
                contract["status"],
                state_error=InvalidStateError,
            )
            existing = self.offers.find_live_for_provider(db, contract_id, actor.user_id)
            if existing is not None:
                raise DuplicateOfferError(payload={"offer_id": existing["id"], "contract_id": contract_id})
            values = validate_offer_payload(payload, default_currency=self.default_currency)
            offer_id = self.offers.create(db, {**values, "contract_id": contract_id, "provider_id": actor.user_id})
            self.audit.record(
                db,
                entity=ENTITY_OFFER,
                entity_id=offer_id,
                action=flow_policy.SUBMIT_OFFER,
                actor=actor,
                to_status=st.OFFER_PENDING,
                details={"contract_id": contract_id, "amount": values["amount"], "currency": values["currency"]},
            )
            offer = self.offers.get_by_id(db, offer_id)

        LOGGER.info(
            "offer_submitted",
            extra={"contract_id": contract_id, "offer_id": offer_id, "provider_id": actor.user_id},
        )
        self.event_bus.publish(
            OfferSubmitted(
                contract_id=contract_id,
                offer_id=offer_id,
                provider_id=actor.user_id,
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(
            payload={"offer": serialize_offer(offer), "message": success_message("offer_submitted")},
            status_code=201,
        )

    def withdraw_offer(self, db, actor: Actor, offer_id: int) -> ServiceOutput:
        with tracked(flow_policy.WITHDRAW_OFFER), db.transaction():
            offer = self._load_offer(db, offer_id)
            contract = load_contract(db, self.contracts, int(offer["contract_id"]), lock=True)
            is_owner = int(offer["provider_id"]) == int(actor.user_id)
            flow_policy.enforce(
                actor.role,
                flow_policy.WITHDRAW_OFFER,
                contract["status"],
                is_owner,
                state_error=InvalidStateError,
            )
            now = utc_now_iso()
            if offer["status"] != st.OFFER_PENDING or not self.offers.withdraw(db, offer_id, withdrawn_at=now):
                raise InvalidStateError(
                    message_key="offer_not_pending",
                    payload={"offer_id": offer_id, "status": offer["status"]},
                )
            self.audit.record(
                db,
                entity=ENTITY_OFFER,
                entity_id=offer_id,
                action=flow_policy.WITHDRAW_OFFER,
                actor=actor,
                from_status=st.OFFER_PENDING,
                to_status=st.OFFER_WITHDRAWN,
                occurred_at=now,
            )
            offer = self.offers.get_by_id(db, offer_id)

        self.event_bus.publish(
            OfferWithdrawn(
                contract_id=int(offer["contract_id"]),
                offer_id=offer_id,
                provider_id=int(offer["provider_id"]),
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(payload={"offer": serialize_offer(offer), "message": success_message("offer_withdrawn")})

    def select_offer(
        self,
        db,
        actor: Actor,
        contract_id: int,
        offer_id: int,
        payload: Dict[str, Any] | None = None,
    ) -> ServiceOutput:
        """Select one offer and advance the contract in a single unit of work.

        The chosen offer becomes ``selected``, every other pending offer on the
        contract is rejected, the coordinator decision is appended to the
        workflow log and the contract moves open_for_offers -> offer_selected ->
        pending_final_approval. Any failure rolls all of it back.
        """
        payload = payload or {}
        with tracked(flow_policy.SELECT_OFFER), db.transaction():
            contract = load_contract(db, self.contracts, contract_id, lock=True)
            offer = self.offers.get_by_id(db, offer_id)
            if offer is None or int(offer["contract_id"]) != int(contract_id):
                raise NotFoundError(
                    message_key="offer_not_found",
                    payload={"offer_id": offer_id, "contract_id": contract_id},
                )
            flow_policy.enforce(
                actor.role,
                flow_policy.SELECT_OFFER,
                contract["status"],
                state_error=InvalidStateError,
            )
            if offer["status"] != st.OFFER_PENDING:
                raise InvalidStateError(
                    message_key="offer_not_pending",
                    payload={"offer_id": offer_id, "status": offer["status"]},
                )
            notes = optional_notes(payload)
            now = utc_now_iso()

            if not self.offers.decide(
                db,
                offer_id,
                to_status=st.OFFER_SELECTED_STATUS,
                decided_by=actor.user_id,
                notes=notes,
                decided_at=now,
            ):
                raise InvalidStateError(message_key="offer_not_pending", payload={"offer_id": offer_id})
            self.audit.record(
                db,
                entity=ENTITY_OFFER,
                entity_id=offer_id,
                action=flow_policy.SELECT_OFFER,
                actor=actor,
                from_status=st.OFFER_PENDING,
                to_status=st.OFFER_SELECTED_STATUS,
                reason=notes,
                occurred_at=now,
            )

            rejected_ids = self.offers.reject_pending(
                db,
                contract_id,
                reason=SIBLING_REJECTION_REASON,
                decided_by=actor.user_id,
                decided_at=now,
                except_offer_id=offer_id,
            )
            for rejected_id in rejected_ids:
                self.audit.record(
                    db,
                    entity=ENTITY_OFFER,
                    entity_id=rejected_id,
                    action="offer_rejected",
                    actor=actor,
                    from_status=st.OFFER_PENDING,
                    to_status=st.OFFER_REJECTED,
                    reason=SIBLING_REJECTION_REASON,
                    occurred_at=now,
                )

            log = WorkflowLog.from_json(contract["workflow"]).append(
                StageDecision(
                    stage=STAGE_COORDINATOR,
                    decision=DECISION_SELECTED,
                    actor_id=actor.user_id,
                    actor_role=actor.role,
                    decided_at=now,
                    notes=notes,
                    selected_offer_id=offer_id,
                )
            )
            details = {"offer_id": offer_id, "rejected_offer_ids": rejected_ids}
            selected = write_transition(
                db,
                self.contracts,
                self.audit,
                contract,
                action=flow_policy.SELECT_OFFER,
                actor=actor,
                to_status=st.OFFER_SELECTED,
                changes={"workflow": log.to_json()},
                details=details,
                occurred_at=now,
            )
            contract = write_transition(
                db,
                self.contracts,
                self.audit,
                selected,
                action=flow_policy.SELECT_OFFER,
                actor=actor,
                to_status=st.PENDING_FINAL_APPROVAL,
                details=details,
                occurred_at=now,
            )
            offer = self.offers.get_by_id(db, offer_id)

        log_transition(contract, action=flow_policy.SELECT_OFFER, from_status=st.OPEN_FOR_OFFERS, actor=actor)
        self.event_bus.publish(
            OfferSelected(
                contract_id=contract_id,
                offer_id=offer_id,
                provider_id=int(offer["provider_id"]),
                rejected_offer_ids=tuple(rejected_ids),
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        self.event_bus.publish(
            ContractTransitioned(
                contract_id=contract_id,
                reference_number=contract["reference_number"],
                action=flow_policy.SELECT_OFFER,
                from_status=st.OPEN_FOR_OFFERS,
                to_status=contract["status"],
                actor_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        return ServiceOutput(
            payload={
                "contract": serialize_contract(contract, actor=actor),
                "offer": serialize_offer(offer),
                "rejected_offer_ids": rejected_ids,
                "message": success_message("offer_selected"),
            }
        )

    def list_offers(
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
        elif actor.role == CLIENT and not is_contract_owner(contract, actor):
            raise ForbiddenError(payload={"contract_id": contract_id})
        if status and status not in st.OFFER_STATUSES:
            raise ValidationError(fields={"status": ["Invalid offer status"]})

        rows, total = self.offers.list_for_contract(
            db,
            contract_id,
            status=status,
            provider_id=provider_id,
            sort=sort,
            page=page,
            limit=limit,
        )
        return ServiceOutput(
            payload={
                "items": [serialize_offer(row) for row in rows],
                "pagination": pagination_meta(page=page, limit=limit, total=total),
            }
        )

    def offers_for_detail(self, db, actor: Actor, contract: Dict[str, Any]) -> list | None:
        """Offers embedded in the contract detail view, or None when the actor may not see them."""
        if actor.role == SERVICE_PROVIDER:
            rows, _ = self.offers.list_for_contract(db, int(contract["id"]), provider_id=actor.user_id)
        elif actor.role in {ADMIN, CONTRACT_COORDINATOR} or is_contract_owner(contract, actor):
            rows, _ = self.offers.list_for_contract(db, int(contract["id"]))
        else:
            return None
        return [serialize_offer(row) for row in rows]
