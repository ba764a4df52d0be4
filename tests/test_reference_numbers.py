import sqlite3
import unittest
from datetime import datetime, timezone

from contract_hub.workflow.reference import format_reference, next_reference_number, parse_reference
from tests.helpers.temp_db import TempDbSandbox
from tests.helpers.workflow_fixtures import CLIENT, build_services, contract_payload, open_schema_db


class ReferenceFormatTest(unittest.TestCase):
    def test_format_and_parse(self) -> None:
        reference = format_reference("CTR", 2031, 7)
        self.assertEqual(reference, "CTR-2031-000007")
        self.assertEqual(parse_reference(reference), ("CTR", 2031, 7))
        self.assertIsNone(parse_reference("CTR-31-7"))
        self.assertIsNone(parse_reference(None))


class ReferenceAllocationTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="reference_numbers")
        self.db = open_schema_db(self._temp_db)

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def test_sequence_increments_per_year(self) -> None:
        now_2031 = datetime(2031, 5, 1, tzinfo=timezone.utc)
        now_2032 = datetime(2032, 1, 2, tzinfo=timezone.utc)
        with self.db.transaction():
            first = next_reference_number(self.db, now=now_2031)
            second = next_reference_number(self.db, now=now_2031)
            other_year = next_reference_number(self.db, prefix="ops", now=now_2032)
        self.assertEqual(first, "CTR-2031-000001")
        self.assertEqual(second, "CTR-2031-000002")
        self.assertEqual(other_year, "OPS-2032-000001")

    def test_rolled_back_allocation_is_released(self) -> None:
        now = datetime(2031, 5, 1, tzinfo=timezone.utc)
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                next_reference_number(self.db, now=now)
                raise RuntimeError("abort")
        with self.db.transaction():
            self.assertEqual(next_reference_number(self.db, now=now), "CTR-2031-000001")

    def test_created_contracts_get_unique_references(self) -> None:
        workflow, _, _ = build_services()
        references = {
            workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]["reference_number"]
            for _ in range(5)
        }
        self.assertEqual(len(references), 5)

    def test_reference_number_is_immutable(self) -> None:
        workflow, _, _ = build_services()
        contract = workflow.create_contract(self.db, CLIENT, contract_payload()).payload["contract"]
        with self.assertRaises(sqlite3.DatabaseError):
            self.db.execute(
                "UPDATE contracts SET reference_number = ? WHERE id = ?",
                ("CTR-1999-000001", contract["id"]),
            )
        row = self.db.execute("SELECT reference_number FROM contracts WHERE id = ?", (contract["id"],)).fetchone()
        self.assertEqual(row["reference_number"], contract["reference_number"])


if __name__ == "__main__":
    unittest.main()
