"""Guarded contract writes shared by the workflow, offer and engagement services."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Dict, Iterator

from contract_hub.application.audit import ENTITY_CONTRACT, AuditTrail
from contract_hub.domain.inputs import Actor
from contract_hub.errors import AppError, InvalidTransitionError, NotFoundError
from contract_hub.infrastructure.repositories import ContractRepository
from contract_hub.observability import observe_workflow_transition


LOGGER = logging.getLogger("contract_hub")


def load_contract(db, contracts: ContractRepository, contract_id: int, *, lock: bool = False) -> Dict[str, Any]:
    contract = contracts.get_by_id(db, contract_id, lock=lock)
    if contract is None:
        raise NotFoundError(message_key="contract_not_found", payload={"contract_id": contract_id})
    return contract


def write_transition(
    db,
    contracts: ContractRepository,
    audit: AuditTrail,
    contract: Dict[str, Any],
    *,
    action: str,
    actor: Actor,
    to_status: str,
    changes: Dict[str, Any] | None = None,
    reason: str | None = None,
    details: Dict[str, Any] | None = None,
    occurred_at: str | None = None,
) -> Dict[str, Any]:
    """Move ``contract`` to ``to_status`` if nobody changed it since it was read.

    Returns the row as stored after the update. Must run inside a transaction.
    """
    from_status = str(contract["status"])
    values = dict(changes or {})
    values["status"] = to_status
    updated = contracts.guarded_update(
        db,
        int(contract["id"]),
        expected_status=from_status,
        expected_version=int(contract["version"]),
        changes=values,
    )
    if not updated:
        raise InvalidTransitionError(
            payload={"action": action, "status": from_status, "contract_id": contract["id"]}
        )
    audit.record(
        db,
        entity=ENTITY_CONTRACT,
        entity_id=int(contract["id"]),
        action=action,
        actor=actor,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        details=details,
        occurred_at=occurred_at,
    )
    return load_contract(db, contracts, int(contract["id"]))


def log_transition(contract: Dict[str, Any], *, action: str, from_status: str, actor: Actor) -> None:
    observe_workflow_transition(action, "success")
    LOGGER.info(
        "contract_transitioned",
        extra={
            "contract_id": contract["id"],
            "reference_number": contract["reference_number"],
            "action": action,
            "from_status": from_status,
            "to_status": contract["status"],
            "actor_id": actor.user_id,
            "actor_role": actor.role,
        },
    )


@contextlib.contextmanager
def tracked(action: str) -> Iterator[None]:
    """Count refused actions by error code; successes are counted where they are logged."""
    try:
        yield
    except AppError as exc:
        observe_workflow_transition(action, exc.code)
        raise
