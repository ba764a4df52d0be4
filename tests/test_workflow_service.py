import unittest

from contract_hub.core import ContractCreated, ContractTransitioned, EventBus
from contract_hub.domain import statuses as st
from contract_hub.domain.inputs import WorkflowRequest
from contract_hub.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UserActionError,
    ValidationError,
)
from contract_hub.infrastructure.repositories import ContractRepository, UserRepository
from contract_hub.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.temp_db import TempDbSandbox
from tests.helpers.workflow_fixtures import (
    ADMIN,
    CLIENT,
    COORDINATOR,
    LEGAL,
    OTHER_CLIENT,
    PROCUREMENT,
    PROVIDER_A,
    PROVIDER_B,
    advance_to_open,
    build_services,
    contract_payload,
    offer_payload,
    open_schema_db,
)


class WorkflowServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="workflow_service")
        self.db = open_schema_db(self._temp_db)
        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(ContractCreated, self.events.append)
        self.bus.subscribe(ContractTransitioned, self.events.append)
        self.workflow, self.offers, self.engagements = build_services(self.bus)

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def _status(self, contract_id: int) -> str:
        return ContractRepository().get_by_id(self.db, contract_id)["status"]

    def _contract_count(self) -> int:
        row = self.db.execute("SELECT COUNT(*) AS total FROM contracts").fetchone()
        return int(row["total"])

    def _to_pending_final(self) -> tuple[int, int]:
        contract_id = advance_to_open(self.workflow, self.db)
        offer_id = self.offers.submit_offer(self.db, PROVIDER_A, contract_id, offer_payload()).payload["offer"]["id"]
        self.offers.select_offer(self.db, COORDINATOR, contract_id, offer_id)
        return contract_id, offer_id

    def test_client_contract_reaches_open_for_offers(self) -> None:
        created = self.workflow.create_contract(self.db, CLIENT, contract_payload())
        self.assertEqual(created.status_code, 201)
        contract = created.payload["contract"]
        self.assertEqual(contract["status"], st.DRAFT)
        self.assertEqual(contract["client_id"], CLIENT.user_id)
        self.assertTrue(contract["reference_number"].startswith("CTR-"))
        self.assertEqual(contract["status_label"], "Request Pending")

        contract_id = contract["id"]
        self.workflow.submit(self.db, CLIENT, contract_id)
        self.workflow.decide_stage(self.db, PROCUREMENT, contract_id, "procurement_approve", {"notes": "Budget ok"})
        result = self.workflow.decide_stage(self.db, LEGAL, contract_id, "legal_approve", {})

        contract = result.payload["contract"]
        self.assertEqual(contract["status"], st.OPEN_FOR_OFFERS)
        self.assertEqual(contract["workflow"]["procurement"]["notes"], "Budget ok")
        self.assertEqual(contract["workflow"]["legal"]["decision"], "approved")
        self.assertEqual(contract["version"], 4)

        transitions = [event for event in self.events if isinstance(event, ContractTransitioned)]
        self.assertEqual(
            [(event.from_status, event.to_status) for event in transitions],
            [
                (st.DRAFT, st.PENDING_PROCUREMENT),
                (st.PENDING_PROCUREMENT, st.PENDING_LEGAL),
                (st.PENDING_LEGAL, st.OPEN_FOR_OFFERS),
            ],
        )
        snapshot = metrics_snapshot()
        self.assertEqual(snapshot["workflow_transitions"]["legal_approve"]["success"], 1)

    def test_procurement_created_contract_starts_in_review(self) -> None:
        client_id = UserRepository().create(self.db, email="buyer@example.com", role="client", display_name="Buyer")
        result = self.workflow.create_contract(self.db, PROCUREMENT, contract_payload(client_id=client_id))
        contract = result.payload["contract"]
        self.assertEqual(contract["status"], st.PENDING_PROCUREMENT)
        self.assertEqual(contract["client_id"], client_id)
        self.assertEqual(contract["created_by"], PROCUREMENT.user_id)

    def test_procurement_cannot_assign_unknown_client(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.workflow.create_contract(self.db, PROCUREMENT, contract_payload(client_id=9999))
        self.assertEqual(ctx.exception.message_key, "client_not_found")
        self.assertEqual(self._contract_count(), 0)

    def test_roles_without_create_target_are_forbidden(self) -> None:
        for actor in (LEGAL, COORDINATOR, ADMIN, PROVIDER_A):
            with self.assertRaises(ForbiddenError):
                self.workflow.create_contract(self.db, actor, contract_payload())

    def test_legal_approve_on_draft_is_invalid_transition(self) -> None:
        contract_id = self.workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["id"]

        with self.assertRaises(InvalidTransitionError) as ctx:
            self.workflow.decide_stage(self.db, LEGAL, contract_id, "legal_approve", {})

        self.assertEqual(ctx.exception.code, "invalid_transition")
        stored = ContractRepository().get_by_id(self.db, contract_id)
        self.assertEqual(stored["status"], st.DRAFT)
        self.assertEqual(stored["version"], 1)
        self.assertEqual(stored["workflow"], "{}")
        self.assertEqual(metrics_snapshot()["workflow_transitions"]["legal_approve"]["invalid_transition"], 1)

    def test_inverted_budget_persists_nothing(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.workflow.create_contract(
                self.db,
                CLIENT,
                contract_payload(budget={"minimum": 500, "maximum": 100}),
            )
        self.assertIn("budget", ctx.exception.fields)
        self.assertEqual(self._contract_count(), 0)
        self.assertFalse(any(isinstance(event, ContractCreated) for event in self.events))

    def test_final_reject_keeps_selected_offer_history(self) -> None:
        contract_id, offer_id = self._to_pending_final()

        result = self.workflow.decide_stage(
            self.db,
            ADMIN,
            contract_id,
            "final_reject",
            {"reason": "budget exceeds approval"},
        )

        contract = result.payload["contract"]
        self.assertEqual(contract["status"], st.REJECTED)
        self.assertEqual(contract["workflow"]["coordinator"]["selected_offer_id"], offer_id)
        self.assertEqual(contract["selected_offer_id"], offer_id)
        self.assertEqual(contract["workflow"]["final_approval"]["reason"], "budget exceeds approval")
        self.assertEqual(contract["rejection"]["stage"], "final_approval")
        self.assertIsNone(contract["assigned_provider_id"])

    def test_final_approve_assigns_selected_provider(self) -> None:
        contract_id, _ = self._to_pending_final()

        result = self.workflow.decide_stage(self.db, ADMIN, contract_id, "final_approve", {})

        contract = result.payload["contract"]
        self.assertEqual(contract["status"], st.FINAL_APPROVED)
        self.assertEqual(contract["assigned_provider_id"], PROVIDER_A.user_id)
        self.assertEqual(contract["workflow"]["final_approval"]["decision"], "approved")

    def test_reject_requires_reason(self) -> None:
        contract_id = self.workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["id"]
        self.workflow.submit(self.db, CLIENT, contract_id)

        with self.assertRaises(ValidationError) as ctx:
            self.workflow.decide_stage(self.db, PROCUREMENT, contract_id, "procurement_reject", {"reason": " "})

        self.assertIn("reason", ctx.exception.fields)
        self.assertEqual(self._status(contract_id), st.PENDING_PROCUREMENT)

    def test_rejected_contract_is_terminal(self) -> None:
        contract_id = self.workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["id"]
        self.workflow.submit(self.db, CLIENT, contract_id)
        self.workflow.decide_stage(self.db, PROCUREMENT, contract_id, "procurement_reject", {"reason": "Duplicate need"})

        with self.assertRaises(InvalidTransitionError):
            self.workflow.submit(self.db, CLIENT, contract_id)
        with self.assertRaises(InvalidTransitionError):
            self.workflow.cancel(self.db, ADMIN, contract_id, {"reason": "cleanup"})
        with self.assertRaises(InvalidTransitionError):
            self.workflow.decide_stage(self.db, PROCUREMENT, contract_id, "procurement_approve", {})
        self.assertEqual(self._status(contract_id), st.REJECTED)

    def test_only_owner_submits(self) -> None:
        contract_id = self.workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["id"]
        with self.assertRaises(ForbiddenError):
            self.workflow.submit(self.db, OTHER_CLIENT, contract_id)
        with self.assertRaises(ForbiddenError):
            self.workflow.get_contract(self.db, OTHER_CLIENT, contract_id)

    def test_legacy_status_is_read_only(self) -> None:
        contract_id = ContractRepository().create(
            self.db,
            {
                "title": "Imported contract",
                "contract_type": "Office Administrator",
                "description": "Imported from the previous system.",
                "target_persons": 1,
                "budget_minimum": 100.0,
                "budget_maximum": 200.0,
                "currency": "EUR",
                "start_date": "2031-01-01",
                "end_date": "2031-02-01",
                "reference_number": "CTR-2030-000001",
                "status": "published",
                "workflow": "{}",
                "client_id": CLIENT.user_id,
            },
        )

        contract = self.workflow.get_contract(self.db, ADMIN, contract_id).payload["contract"]
        self.assertTrue(contract["is_legacy"])
        self.assertEqual(contract["allowed_actions"], ["view_history"])
        for action in ("final_approve", "final_reject"):
            with self.assertRaises(InvalidTransitionError):
                self.workflow.decide_stage(self.db, ADMIN, contract_id, action, {"reason": "x"})
        with self.assertRaises(InvalidTransitionError):
            self.workflow.cancel(self.db, ADMIN, contract_id, {"reason": "x"})
        self.assertEqual(self._status(contract_id), "published")

    def test_edit_rules(self) -> None:
        contract_id = self.workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["id"]

        edited = self.workflow.edit_contract(self.db, CLIENT, contract_id, {"title": "Helpdesk v2"})
        self.assertEqual(edited.payload["contract"]["title"], "Helpdesk v2")
        self.assertEqual(edited.payload["contract"]["version"], 2)

        with self.assertRaises(ValidationError) as ctx:
            self.workflow.edit_contract(self.db, CLIENT, contract_id, {"status": st.FINAL_APPROVED})
        self.assertIn("status", ctx.exception.fields)

        with self.assertRaises(UserActionError) as ctx:
            self.workflow.edit_contract(self.db, CLIENT, contract_id, {"title": "Helpdesk v2"})
        self.assertEqual(ctx.exception.code, "no_changes")

        self.workflow.submit(self.db, CLIENT, contract_id)
        with self.assertRaises(InvalidTransitionError):
            self.workflow.edit_contract(self.db, CLIENT, contract_id, {"title": "Too late"})
        reviewed = self.workflow.edit_contract(self.db, PROCUREMENT, contract_id, {"target_persons": 5})
        self.assertEqual(reviewed.payload["contract"]["target_persons"], 5)

    def test_final_approved_contract_is_frozen(self) -> None:
        contract_id, _ = self._to_pending_final()
        self.workflow.decide_stage(self.db, ADMIN, contract_id, "final_approve", {})

        with self.assertRaises(InvalidTransitionError) as ctx:
            self.workflow.edit_contract(self.db, ADMIN, contract_id, {"title": "Changed"})
        self.assertEqual(ctx.exception.message_key, "contract_frozen")
        with self.assertRaises(InvalidTransitionError):
            self.workflow.cancel(self.db, ADMIN, contract_id, {"reason": "late"})

    def test_delete_hides_contract(self) -> None:
        contract_id = self.workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["id"]

        result = self.workflow.delete_contract(self.db, CLIENT, contract_id)

        self.assertTrue(result.payload["deleted"])
        with self.assertRaises(NotFoundError):
            self.workflow.get_contract(self.db, CLIENT, contract_id)
        stored = ContractRepository().get_by_id(self.db, contract_id, include_deleted=True)
        self.assertEqual(stored["is_deleted"], 1)
        self.assertEqual(stored["deleted_by"], CLIENT.user_id)

    def test_cancel_rejects_pending_offers(self) -> None:
        contract_id = advance_to_open(self.workflow, self.db)
        first = self.offers.submit_offer(self.db, PROVIDER_A, contract_id, offer_payload()).payload["offer"]["id"]
        second = self.offers.submit_offer(self.db, PROVIDER_B, contract_id, offer_payload(9000)).payload["offer"]["id"]

        result = self.workflow.cancel(self.db, ADMIN, contract_id, {"reason": "Project stopped"})

        self.assertEqual(result.payload["contract"]["status"], st.CANCELLED)
        self.assertEqual(result.payload["contract"]["cancellation_reason"], "Project stopped")
        self.assertEqual(result.payload["rejected_offer_ids"], [first, second])
        offers = self.offers.list_offers(self.db, ADMIN, contract_id).payload["items"]
        self.assertEqual({offer["status"] for offer in offers}, {"rejected"})

    def test_client_cancel_limited_to_early_statuses(self) -> None:
        contract_id = advance_to_open(self.workflow, self.db)
        with self.assertRaises(InvalidTransitionError):
            self.workflow.cancel(self.db, CLIENT, contract_id, {"reason": "Changed my mind"})

    def test_history_lists_audit_trail(self) -> None:
        contract_id = advance_to_open(self.workflow, self.db)

        history = self.workflow.history(self.db, CLIENT, contract_id).payload
        actions = [event["action"] for event in history["events"]]
        self.assertEqual(actions, ["create", "submit", "procurement_approve", "legal_approve"])
        self.assertEqual(history["events"][1]["from_status"], st.DRAFT)
        self.assertEqual(history["events"][1]["actor_role"], "client")
        self.assertEqual(set(history["workflow"]), {"procurement", "legal"})

        with self.assertRaises(ForbiddenError):
            self.workflow.history(self.db, OTHER_CLIENT, contract_id)
        with self.assertRaises(ForbiddenError):
            self.workflow.history(self.db, PROVIDER_A, contract_id)

    def test_dispatch_routes_dotted_actions(self) -> None:
        contract_id = self.workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["id"]
        self.workflow.dispatch(self.db, WorkflowRequest(contract_id=contract_id, action="submit", actor=CLIENT))

        result = self.workflow.dispatch(
            self.db,
            WorkflowRequest(contract_id=contract_id, action="procurement.approve", actor=PROCUREMENT),
        )
        self.assertEqual(result.payload["contract"]["status"], st.PENDING_LEGAL)

        with self.assertRaises(UserActionError):
            self.workflow.dispatch(self.db, WorkflowRequest(contract_id=contract_id, action="teleport", actor=ADMIN))
        with self.assertRaises(ValidationError):
            self.workflow.dispatch(self.db, WorkflowRequest(contract_id=None, action="submit", actor=CLIENT))

    def test_missing_contract_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.workflow.submit(self.db, CLIENT, 424242)
        self.assertEqual(ctx.exception.message_key, "contract_not_found")


if __name__ == "__main__":
    unittest.main()
