import os
import tempfile
import unittest
from pathlib import Path

from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path, open_sqlite_temp_connection


class TempDbHelperTest(unittest.TestCase):
    def test_sandbox_is_created_and_removed(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        self.assertTrue(os.path.isfile(sandbox.db_path))
        self.assertTrue(Path(sandbox.db_path).resolve().is_relative_to(Path(tempfile.gettempdir()).resolve()))

        conn = open_sqlite_temp_connection(sandbox.db_path)
        try:
            conn.execute("CREATE TABLE sanity (id INTEGER PRIMARY KEY, value TEXT)")
            conn.execute("INSERT INTO sanity (value) VALUES ('ok')")
            self.assertEqual(conn.execute("SELECT COUNT(*) FROM sanity").fetchone()[0], 1)
        finally:
            conn.close()
        Path(sandbox.db_path + "-journal").write_text("", encoding="utf-8")

        sandbox.cleanup()
        self.assertFalse(os.path.exists(sandbox.db_path))
        self.assertFalse(os.path.exists(sandbox.temp_dir))

    def test_sandboxes_do_not_share_files(self) -> None:
        first = TempDbSandbox(prefix="temp_db_a")
        second = TempDbSandbox(prefix="temp_db_a")
        try:
            self.assertNotEqual(first.db_path, second.db_path)
        finally:
            first.cleanup()
            second.cleanup()

    def test_unsafe_paths_are_refused(self) -> None:
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(os.path.join(os.getcwd(), "contract_hub_test.db"))
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(os.path.join(tempfile.gettempdir(), "contract_hub.db"))


if __name__ == "__main__":
    unittest.main()
