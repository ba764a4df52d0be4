from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List

from contract_hub.core import (
    ContractCreated,
    ContractTransitioned,
    DomainEvent,
    EngagementRequestCreated,
    EngagementRequestDecided,
    EventBus,
    OfferSelected,
    OfferSubmitted,
    OfferWithdrawn,
)
from contract_hub.domain.inputs import Actor
from contract_hub.infrastructure.repositories import AuditEventRepository


LOGGER = logging.getLogger("contract_hub")

ENTITY_CONTRACT = "contract"
ENTITY_OFFER = "offer"
ENTITY_REQUEST = "request"
ENTITY_USER = "user"


class AuditTrail:
    """Writes audit rows inside the caller's transaction."""

    def __init__(self, repository: AuditEventRepository | None = None) -> None:
        self.repository = repository or AuditEventRepository()

    def record(
        self,
        db,
        *,
        entity: str,
        entity_id: int,
        action: str,
        actor: Actor | None,
        from_status: str | None = None,
        to_status: str | None = None,
        reason: str | None = None,
        details: Dict[str, Any] | None = None,
        occurred_at: str | None = None,
    ) -> int:
        return self.repository.add_event(
            db,
            entity=entity,
            entity_id=entity_id,
            action=action,
            actor_id=actor.user_id if actor else None,
            actor_role=actor.role if actor else None,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            details=details,
            occurred_at=occurred_at,
        )

    def contract_history(self, db, contract_id: int) -> List[dict]:
        return self.repository.list_for_contract(db, contract_id)


def _event_fields(event: DomainEvent) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key, value in asdict(event).items():
        if isinstance(value, datetime):
            value = value.isoformat().replace("+00:00", "Z")
        elif isinstance(value, tuple):
            value = list(value)
        fields[key] = value
    return fields


def _log_domain_event(event: DomainEvent) -> None:
    LOGGER.info("domain_event", extra={"event_type": type(event).__name__, **_event_fields(event)})


def register_event_handlers(event_bus: EventBus) -> None:
    for event_type in (
        ContractCreated,
        ContractTransitioned,
        OfferSubmitted,
        OfferSelected,
        OfferWithdrawn,
        EngagementRequestCreated,
        EngagementRequestDecided,
    ):
        event_bus.subscribe(event_type, _log_domain_event)
