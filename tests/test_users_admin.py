import unittest

from contract_hub.application.user_service import DEMO_USERS, UserService
from contract_hub.db import close_db, get_db
from tests.helpers.temp_db import TempDbSandbox
from tests.helpers.workflow_fixtures import (
    ADMIN,
    CLIENT,
    PROCUREMENT,
    build_temp_app,
    contract_payload,
    principal_headers,
)


class UsersAdminTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="users_admin")
        self.app = build_temp_app(self._temp_db)
        self.client = self.app.test_client()
        self.admin_headers = principal_headers(ADMIN)

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _create_user(self, email: str, role: str, expected: int = 201, **extra) -> dict:
        response = self.client.post(
            "/api/admin/users",
            json={"email": email, "role": role, **extra},
            headers=self.admin_headers,
        )
        self.assertEqual(response.status_code, expected, response.get_data(as_text=True))
        return response.get_json()

    def test_admin_creates_and_lists_users(self) -> None:
        created = self._create_user(" Ana@Example.com ", "client", display_name="Ana Costa")["user"]
        self.assertEqual(created["email"], "ana@example.com")
        self.assertEqual(created["role"], "client")
        self.assertTrue(created["is_active"])

        self._create_user("legal@example.com", "legal_counsel")

        listing = self.client.get("/api/admin/users?role=client", headers=self.admin_headers).get_json()
        self.assertEqual([item["email"] for item in listing["items"]], ["ana@example.com"])
        self.assertEqual(listing["pagination"]["total"], 1)

        searched = self.client.get("/api/admin/users?search=costa", headers=self.admin_headers).get_json()
        self.assertEqual(len(searched["items"]), 1)

    def test_duplicate_email_is_conflict(self) -> None:
        self._create_user("dup@example.com", "client")
        payload = self._create_user("DUP@example.com", "admin", expected=409)
        self.assertEqual(payload["error"], "email_already_registered")

    def test_invalid_input_is_rejected(self) -> None:
        payload = self._create_user("not-an-email", "client", expected=400)
        self.assertIn("email", payload["fields"])

        payload = self._create_user("someone@example.com", "superuser", expected=400)
        self.assertIn("role", payload["fields"])

        bad_flag = self.client.get("/api/admin/users?is_active=maybe", headers=self.admin_headers)
        self.assertEqual(bad_flag.status_code, 400)

    def test_admin_changes_role_and_active_flag(self) -> None:
        user_id = self._create_user("worker@example.com", "client")["user"]["id"]

        response = self.client.patch(
            f"/api/admin/users/{user_id}",
            json={"role": "contract_coordinator", "is_active": False},
            headers=self.admin_headers,
        )
        self.assertEqual(response.status_code, 200)
        user = response.get_json()["user"]
        self.assertEqual(user["role"], "contract_coordinator")
        self.assertFalse(user["is_active"])

        unchanged = self.client.patch(
            f"/api/admin/users/{user_id}",
            json={"role": "contract_coordinator"},
            headers=self.admin_headers,
        )
        self.assertEqual(unchanged.status_code, 400)
        self.assertEqual(unchanged.get_json()["error"], "no_changes")

        missing = self.client.patch("/api/admin/users/9999", json={"role": "admin"}, headers=self.admin_headers)
        self.assertEqual(missing.status_code, 404)

    def test_non_admin_is_forbidden(self) -> None:
        for path in ("/api/admin/audit-events",):
            self.assertEqual(self.client.get(path, headers=principal_headers(CLIENT)).status_code, 403)
        created = self.client.post(
            "/api/admin/users",
            json={"email": "x@example.com", "role": "admin"},
            headers=principal_headers(PROCUREMENT),
        )
        self.assertEqual(created.status_code, 403)
        self.assertEqual(self.client.get("/api/admin/users", headers=principal_headers(CLIENT)).status_code, 403)

    def test_procurement_only_sees_active_clients(self) -> None:
        active_id = self._create_user("active@example.com", "client")["user"]["id"]
        self._create_user("inactive@example.com", "client", is_active=False)
        self._create_user("boss@example.com", "admin")

        listing = self.client.get("/api/admin/users?role=admin", headers=principal_headers(PROCUREMENT)).get_json()
        self.assertEqual([item["id"] for item in listing["items"]], [active_id])

    def test_procurement_creates_contract_for_client(self) -> None:
        client_id = self._create_user("buyer@example.com", "client")["user"]["id"]
        inactive_id = self._create_user("gone@example.com", "client", is_active=False)["user"]["id"]

        response = self.client.post(
            "/api/contracts",
            json=contract_payload(client_id=client_id),
            headers=principal_headers(PROCUREMENT),
        )
        self.assertEqual(response.status_code, 201)
        contract = response.get_json()["contract"]
        self.assertEqual(contract["status"], "pending_procurement")
        self.assertEqual(contract["client_id"], client_id)

        refused = self.client.post(
            "/api/contracts",
            json=contract_payload(client_id=inactive_id),
            headers=principal_headers(PROCUREMENT),
        )
        self.assertEqual(refused.status_code, 404)

    def test_audit_events_record_user_changes(self) -> None:
        user_id = self._create_user("audited@example.com", "client")["user"]["id"]
        self.client.patch(f"/api/admin/users/{user_id}", json={"role": "legal_counsel"}, headers=self.admin_headers)

        payload = self.client.get("/api/admin/audit-events?entity=user", headers=self.admin_headers).get_json()
        actions = [item["action"] for item in payload["items"]]
        self.assertEqual(sorted(actions), ["change_role", "create_user"])
        role_change = next(item for item in payload["items"] if item["action"] == "change_role")
        self.assertEqual(role_change["from_status"], "client")
        self.assertEqual(role_change["to_status"], "legal_counsel")
        self.assertEqual(role_change["actor_id"], ADMIN.user_id)

    def test_seed_demo_users_is_idempotent(self) -> None:
        with self.app.app_context():
            service = UserService()
            first = service.seed_demo_users(get_db())
            second = service.seed_demo_users(get_db())

        self.assertEqual(first, [entry["email"] for entry in DEMO_USERS])
        self.assertEqual(second, [])

    def test_admin_fetches_single_user_with_contracts(self) -> None:
        client_id = self._create_user("buyer@example.com", "client")["user"]["id"]
        provider_id = self._create_user("vendor@example.com", "service_provider")["user"]["id"]
        contract = self.client.post(
            "/api/contracts",
            json=contract_payload(client_id=client_id),
            headers=principal_headers(PROCUREMENT),
        ).get_json()["contract"]

        response = self.client.get(f"/api/admin/users/{client_id}", headers=self.admin_headers)
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["user"]["email"], "buyer@example.com")
        self.assertEqual([item["reference_number"] for item in payload["contracts"]], [contract["reference_number"]])
        self.assertEqual(payload["contracts"][0]["status"], "pending_procurement")

        provider = self.client.get(f"/api/admin/users/{provider_id}", headers=self.admin_headers).get_json()
        self.assertEqual(provider["assigned_contracts"], [])
        self.assertNotIn("contracts", provider)

        missing = self.client.get("/api/admin/users/9999", headers=self.admin_headers)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json()["user_id"], 9999)
        forbidden = self.client.get(f"/api/admin/users/{client_id}", headers=principal_headers(PROCUREMENT))
        self.assertEqual(forbidden.status_code, 403)

    def test_reports_cover_contracts_users_and_providers(self) -> None:
        client_id = self._create_user("buyer@example.com", "client")["user"]["id"]
        self._create_user("idle@example.com", "service_provider", is_active=False)
        self.client.post("/api/contracts", json=contract_payload(), headers=principal_headers(CLIENT))
        self.client.post(
            "/api/contracts",
            json=contract_payload(client_id=client_id, contract_type="Software Handling"),
            headers=principal_headers(PROCUREMENT),
        )

        response = self.client.get("/api/admin/reports", headers=self.admin_headers)
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["type"], "overview")
        report = payload["report"]

        self.assertEqual(report["contracts"]["total_contracts"], 2)
        by_status = {entry["status"]: entry for entry in report["contracts"]["by_status"]}
        self.assertEqual(set(by_status), {"draft", "pending_procurement"})
        draft_type = by_status["draft"]["by_type"][0]
        self.assertEqual(draft_type["type"], "IT Service")
        self.assertEqual(draft_type["count"], 1)
        self.assertEqual(draft_type["budget"]["total_min"], 10000.0)
        self.assertEqual(draft_type["budget"]["avg_max"], 25000.0)

        by_role = {entry["role"]: entry for entry in report["users"]["by_role"]}
        self.assertEqual(by_role["client"]["active_users"], 1)
        self.assertEqual(by_role["service_provider"]["inactive_users"], 1)
        self.assertEqual(report["users"]["total_users"], 2)
        self.assertEqual(report["providers"]["total_providers"], 0)
        self.assertEqual(report["providers"]["total_offers"], 0)

        window = self.client.get(
            "/api/admin/reports?type=contracts&start_date=2000-01-01&end_date=2000-01-31",
            headers=self.admin_headers,
        ).get_json()
        self.assertEqual(window["type"], "contracts")
        self.assertEqual(window["range"], {"start_date": "2000-01-01", "end_date": "2000-01-31"})
        self.assertEqual(window["report"], {"by_status": [], "total_contracts": 0})

        open_ended = self.client.get("/api/admin/reports?type=users&start_date=2000-01-01", headers=self.admin_headers)
        self.assertEqual(open_ended.get_json()["report"]["total_users"], 2)

    def test_reports_reject_bad_filters(self) -> None:
        bad_type = self.client.get("/api/admin/reports?type=revenue", headers=self.admin_headers)
        self.assertEqual(bad_type.status_code, 400)
        self.assertIn("type", bad_type.get_json()["fields"])

        reversed_range = self.client.get(
            "/api/admin/reports?start_date=2031-02-01&end_date=2031-01-01",
            headers=self.admin_headers,
        )
        self.assertEqual(reversed_range.status_code, 400)
        self.assertIn("end_date", reversed_range.get_json()["fields"])

        self.assertEqual(
            self.client.get("/api/admin/reports?start_date=soon", headers=self.admin_headers).status_code,
            400,
        )
        self.assertEqual(self.client.get("/api/admin/reports", headers=principal_headers(CLIENT)).status_code, 403)


if __name__ == "__main__":
    unittest.main()
