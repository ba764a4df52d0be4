from __future__ import annotations

from typing import Any, Dict

from contract_hub import create_app
from contract_hub.config import Config
from contract_hub.core import EventBus
from contract_hub.db import Database, connect_database, init_schema
from contract_hub.domain.inputs import Actor
from tests.helpers.temp_db import TempDbSandbox


CLIENT = Actor(user_id=101, role="client")
OTHER_CLIENT = Actor(user_id=102, role="client")
PROCUREMENT = Actor(user_id=201, role="procurement_manager")
LEGAL = Actor(user_id=301, role="legal_counsel")
COORDINATOR = Actor(user_id=401, role="contract_coordinator")
ADMIN = Actor(user_id=501, role="admin")
PROVIDER_A = Actor(user_id=601, role="service_provider")
PROVIDER_B = Actor(user_id=602, role="service_provider")
PROVIDER_C = Actor(user_id=603, role="service_provider")


def principal_headers(actor: Actor) -> Dict[str, str]:
    return {"X-User-Id": str(actor.user_id), "X-User-Role": actor.role}


def build_temp_app(temp_db: TempDbSandbox, **overrides):
    attrs = {
        "TESTING": True,
        "LOG_JSON": False,
        "RATE_LIMIT_ENABLED": False,
        "PROPAGATE_EXCEPTIONS": False,
    }
    attrs.update(overrides)
    return create_app(temp_db.make_config(Config, **attrs))


def open_schema_db(temp_db: TempDbSandbox) -> Database:
    db = connect_database(temp_db.db_path)
    init_schema(db)
    return db


def contract_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "title": "Managed helpdesk for the Lisbon office",
        "contract_type": "IT Service",
        "description": "First and second line support for forty workstations.",
        "target_conditions": "On site twice a week",
        "target_persons": 3,
        "budget": {"minimum": 10000, "maximum": 25000, "currency": "EUR"},
        "start_date": "2031-03-01",
        "end_date": "2031-06-30",
    }
    payload.update(overrides)
    return payload


def offer_payload(amount: float = 18000, **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "amount": amount,
        "currency": "EUR",
        "timeline": {"start_date": "2031-03-01", "end_date": "2031-06-30"},
        "description": "Two technicians with remote escalation.",
        "deliverables": ["Weekly ticket report", {"title": "Asset inventory"}],
        "terms": "Monthly invoicing",
    }
    payload.update(overrides)
    return payload


def request_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "service_name": "Helpdesk onboarding",
        "budget": {"amount": 4000, "currency": "EUR"},
        "number_of_persons": 2,
        "timeline": {"start_time": "2031-03-01T09:00:00Z", "end_time": "2031-03-05T18:00:00Z"},
        "description": "Kick-off week with the client IT team.",
        "cover_letter": "We are ready to start on the agreed date.",
    }
    payload.update(overrides)
    return payload


def build_services(bus: EventBus | None = None):
    """Workflow, offer and engagement services sharing one event bus."""
    from contract_hub.application.engagement_service import EngagementService
    from contract_hub.application.offer_service import OfferService
    from contract_hub.application.workflow_service import WorkflowService

    bus = bus or EventBus()
    offers = OfferService(event_bus=bus)
    engagements = EngagementService(event_bus=bus)
    workflow = WorkflowService(event_bus=bus, offer_service=offers, engagement_service=engagements)
    return workflow, offers, engagements


def advance_to_open(workflow, db: Database, payload: Dict[str, Any] | None = None) -> int:
    """Create a client contract and push it through procurement and legal approval."""
    created = workflow.create_contract(db, CLIENT, payload or contract_payload())
    contract_id = int(created.payload["contract"]["id"])
    workflow.submit(db, CLIENT, contract_id)
    workflow.decide_stage(db, PROCUREMENT, contract_id, "procurement_approve", {})
    workflow.decide_stage(db, LEGAL, contract_id, "legal_approve", {})
    return contract_id
