import re
import unittest

from contract_hub.db import close_db
from contract_hub.observability import reset_metrics_for_tests
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
    build_temp_app,
    contract_payload,
    offer_payload,
    principal_headers,
    request_payload,
)


class ContractRoutesTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="contract_routes")
        self.app = build_temp_app(self._temp_db)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _post(self, path: str, actor, payload=None, expected: int = 200) -> dict:
        response = self.client.post(path, json=payload or {}, headers=principal_headers(actor))
        self.assertEqual(response.status_code, expected, response.get_data(as_text=True))
        return response.get_json()

    def _get(self, path: str, actor, expected: int = 200) -> dict:
        response = self.client.get(path, headers=principal_headers(actor))
        self.assertEqual(response.status_code, expected, response.get_data(as_text=True))
        return response.get_json()

    def _create(self, actor=CLIENT, **overrides) -> dict:
        return self._post("/api/contracts", actor, contract_payload(**overrides), expected=201)["contract"]

    def _open_contract(self) -> int:
        contract_id = int(self._create()["id"])
        self._post(f"/api/contracts/{contract_id}/submit", CLIENT)
        self._post(f"/api/contracts/{contract_id}/procurement/approve", PROCUREMENT, {"notes": "Budget fits"})
        self._post(f"/api/contracts/{contract_id}/legal/approve", LEGAL)
        return contract_id

    def test_full_lifecycle_over_http(self) -> None:
        contract_id = self._open_contract()

        offer_a = self._post(f"/api/contracts/{contract_id}/offers", PROVIDER_A, offer_payload(17000), expected=201)
        offer_b = self._post(f"/api/contracts/{contract_id}/offers", PROVIDER_B, offer_payload(19000), expected=201)
        chosen = int(offer_b["offer"]["id"])

        selected = self._post(
            f"/api/contracts/{contract_id}/offers/{chosen}/select",
            COORDINATOR,
            {"notes": "Stronger references"},
        )
        self.assertEqual(selected["contract"]["status"], "pending_final_approval")
        self.assertEqual(selected["contract"]["selected_offer_id"], chosen)
        self.assertEqual(selected["rejected_offer_ids"], [int(offer_a["offer"]["id"])])

        approved = self._post(f"/api/contracts/{contract_id}/final/approve", ADMIN)
        self.assertEqual(approved["contract"]["status"], "final_approved")
        self.assertEqual(approved["contract"]["assigned_provider_id"], PROVIDER_B.user_id)

        created_request = self._post(
            f"/api/contracts/{contract_id}/requests",
            PROVIDER_B,
            request_payload(),
            expected=201,
        )
        request_id = int(created_request["request"]["id"])
        accepted = self._post(f"/api/requests/{request_id}/accept", CLIENT, {"notes": "Welcome aboard"})
        self.assertEqual(accepted["request"]["status"], "accepted")

        inbox = self._get("/api/requests", PROVIDER_B)
        self.assertEqual([item["id"] for item in inbox["items"]], [request_id])
        self.assertEqual(inbox["items"][0]["contract"]["id"], contract_id)
        self.assertEqual(inbox["items"][0]["timeline"]["start_time"], "2031-03-01T09:00:00Z")
        self.assertEqual(self._get("/api/requests", PROVIDER_A)["items"], [])
        self.assertEqual(self._get("/api/requests", CLIENT, expected=403)["error"], "forbidden")

        history =self._get(f"/api/contracts/{contract_id}/history", CLIENT)["events"]
        actions = [event["action"] for event in history]
        for expected_action in ("create", "submit", "procurement_approve", "legal_approve", "select_offer", "final_approve"):
            self.assertIn(expected_action, actions)

        detail = self._get(f"/api/contracts/{contract_id}", CLIENT)["contract"]
        self.assertEqual(detail["status_label"], "Contract Approved")
        self.assertEqual(detail["workflow"]["procurement"]["notes"], "Budget fits")

    def test_creation_assigns_reference_number(self) -> None:
        contract = self._create()

        self.assertRegex(contract["reference_number"], r"^CTR-\d{4}-\d{6}$")
        self.assertEqual(contract["status"], "draft")
        self.assertEqual(contract["client_id"], CLIENT.user_id)
        self.assertEqual(contract["version"], 1)
        self.assertIn("submit", contract["allowed_actions"])

    def test_generic_action_route_dispatches(self) -> None:
        contract_id = int(self._create()["id"])

        submitted = self._post(f"/api/contracts/{contract_id}/actions/submit", CLIENT)
        self.assertEqual(submitted["contract"]["status"], "pending_procurement")

        rejected = self._post(
            f"/api/contracts/{contract_id}/actions/procurement-reject",
            PROCUREMENT,
            {"reason": "Budget too low"},
        )
        self.assertEqual(rejected["contract"]["status"], "rejected")
        self.assertEqual(rejected["contract"]["rejection"]["reason"], "Budget too low")

    def test_reject_without_reason_is_refused(self) -> None:
        contract_id = int(self._create()["id"])
        self._post(f"/api/contracts/{contract_id}/submit", CLIENT)

        payload = self._post(f"/api/contracts/{contract_id}/procurement/reject", PROCUREMENT, {}, expected=400)
        self.assertIn("reason", payload["fields"])
        detail = self._get(f"/api/contracts/{contract_id}", ADMIN)["contract"]
        self.assertEqual(detail["status"], "pending_procurement")

    def test_patch_and_delete(self) -> None:
        contract_id = int(self._create()["id"])

        response = self.client.patch(
            f"/api/contracts/{contract_id}",
            json={"title": "Managed helpdesk, extended hours"},
            headers=principal_headers(CLIENT),
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["contract"]["version"], 2)

        forbidden = self.client.delete(f"/api/contracts/{contract_id}", headers=principal_headers(OTHER_CLIENT))
        self.assertEqual(forbidden.status_code, 403)

        deleted = self.client.delete(f"/api/contracts/{contract_id}", headers=principal_headers(CLIENT))
        self.assertEqual(deleted.status_code, 200)
        self._get(f"/api/contracts/{contract_id}", CLIENT, expected=404)

    def test_client_listing_is_scoped_and_paginated(self) -> None:
        for index in range(3):
            self._create(title=f"Office cleaning lot {index}", contract_type="Office Administrator")
        self._create(actor=OTHER_CLIENT, title="Someone else's contract")

        first_page = self._get("/api/contracts?limit=2&page=1", CLIENT)
        self.assertEqual(len(first_page["items"]), 2)
        self.assertEqual(first_page["pagination"]["total"], 3)
        self.assertTrue(first_page["pagination"]["has_next"])
        self.assertEqual(first_page["items"][0]["title"], "Office cleaning lot 2")

        second_page = self._get("/api/contracts?limit=2&page=2", CLIENT)
        self.assertEqual(len(second_page["items"]), 1)
        self.assertFalse(second_page["pagination"]["has_next"])

        searched = self._get("/api/contracts?search=lot%201", CLIENT)
        self.assertEqual([item["title"] for item in searched["items"]], ["Office cleaning lot 1"])

        bad_filter = self._get("/api/contracts?status=flying", CLIENT, expected=400)
        self.assertIn("status", bad_filter["fields"])

    def test_staff_queues_follow_role(self) -> None:
        draft_id = int(self._create()["id"])
        pending_id = int(self._create(title="Data room migration")["id"])
        self._post(f"/api/contracts/{pending_id}/submit", CLIENT)
        open_id = self._open_contract()

        procurement_ids = [item["id"] for item in self._get("/api/contracts", PROCUREMENT)["items"]]
        self.assertEqual(procurement_ids, [pending_id])

        coordinator_ids = [item["id"] for item in self._get("/api/contracts", COORDINATOR)["items"]]
        self.assertEqual(coordinator_ids, [open_id])

        provider_ids = [item["id"] for item in self._get("/api/contracts", PROVIDER_A)["items"]]
        self.assertEqual(provider_ids, [open_id])

        admin_total = self._get("/api/contracts", ADMIN)["pagination"]["total"]
        self.assertEqual(admin_total, 3)
        self.assertIn(draft_id, [item["id"] for item in self._get("/api/contracts", ADMIN)["items"]])

    def test_provider_cannot_read_draft(self) -> None:
        contract_id = int(self._create()["id"])
        self._get(f"/api/contracts/{contract_id}", PROVIDER_A, expected=403)
        self._get(f"/api/contracts/{contract_id}", OTHER_CLIENT, expected=403)

    def test_offer_routes(self) -> None:
        contract_id = self._open_contract()
        offer = self._post(f"/api/contracts/{contract_id}/offers", PROVIDER_A, offer_payload(), expected=201)["offer"]

        duplicate = self._post(f"/api/contracts/{contract_id}/offers", PROVIDER_A, offer_payload(), expected=409)
        self.assertEqual(duplicate["error"], "duplicate_offer")

        listing = self._get(f"/api/contracts/{contract_id}/offers", COORDINATOR)
        self.assertEqual([item["id"] for item in listing["items"]], [offer["id"]])

        withdrawn = self._post(f"/api/offers/{offer['id']}/withdraw", PROVIDER_A)
        self.assertEqual(withdrawn["offer"]["status"], "withdrawn")

        pending_only = self._get(f"/api/contracts/{contract_id}/offers?status=pending", COORDINATOR)
        self.assertEqual(pending_only["items"], [])

    def test_catalog_is_public(self) -> None:
        response = self.client.get("/api/meta/catalog")
        self.assertEqual(response.status_code, 200)

        payload = response.get_json()
        self.assertIn("IT Service", payload["contract_types"])
        self.assertEqual(payload["statuses"]["live"][0], "draft")
        self.assertIn("published", payload["statuses"]["legacy"])
        self.assertIn("client_status_labels", payload)
        self.assertTrue(payload["workflow"])

    def test_dashboard_stats_per_role(self) -> None:
        first = int(self._create()["id"])
        second = int(self._create(title="Data room migration")["id"])
        for contract_id in (first, second):
            self._post(f"/api/contracts/{contract_id}/submit", CLIENT)
        self._post(f"/api/contracts/{first}/procurement/approve", PROCUREMENT)

        procurement = self._get("/api/dashboard/stats", PROCUREMENT)
        self.assertEqual(procurement["role"], "procurement_manager")
        self.assertEqual(procurement["stats"], {"pending": 1, "approved_today": 1, "rejected_today": 0})

        client = self._get("/api/dashboard/stats", CLIENT)["stats"]
        self.assertEqual(client["total_contracts"], 2)
        self.assertEqual(client["contracts_by_status"], {"pending_procurement": 1, "pending_legal": 1})

        other = self._get("/api/dashboard/stats", OTHER_CLIENT)["stats"]
        self.assertEqual(other["total_contracts"], 0)

        legal = self._get("/api/dashboard/stats", LEGAL)["stats"]
        self.assertEqual(legal["pending"], 1)

    def test_history_of_unknown_contract(self) -> None:
        payload = self._get("/api/contracts/4242/history", ADMIN, expected=404)
        self.assertEqual(payload["contract_id"], 4242)

    def test_reference_numbers_are_sequential(self) -> None:
        first = self._create()["reference_number"]
        second = self._create()["reference_number"]
        first_seq = int(re.search(r"(\d{6})$", first).group(1))
        second_seq = int(re.search(r"(\d{6})$", second).group(1))
        self.assertEqual(second_seq, first_seq + 1)


if __name__ == "__main__":
    unittest.main()
