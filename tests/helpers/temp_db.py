from __future__ import annotations

import shutil
import sqlite3
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path


_REPO_ROOT = Path(__file__).resolve().parents[2]
_TEMP_ROOT = Path(tempfile.gettempdir()).resolve()
_SQLITE_SIDECARS = ("-journal", "-wal", "-shm")


def assert_safe_temp_db_path(db_path: str) -> None:
    """Test databases live under the system temp dir and never inside the checkout."""
    resolved = Path(db_path).resolve()
    if not resolved.is_relative_to(_TEMP_ROOT):
        raise ValueError(f"Temporary DB must live under TEMP: {resolved}")
    if resolved.is_relative_to(_REPO_ROOT):
        raise ValueError(f"Temporary DB cannot live inside the repository: {resolved}")
    if resolved.name == "contract_hub.db":
        raise ValueError(f"Temporary DB cannot reuse the application database name: {resolved}")


def open_sqlite_temp_connection(db_path: str) -> sqlite3.Connection:
    assert_safe_temp_db_path(db_path)
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(db_path, timeout=30.0, isolation_level=None)


def _retry(action, attempts: int = 6, base_delay: float = 0.05) -> None:
    # Windows keeps sqlite files locked for a moment after close.
    for attempt in range(attempts):
        try:
            action()
            return
        except FileNotFoundError:
            return
        except OSError:
            if attempt == attempts - 1:
                raise
            time.sleep(base_delay * (2**attempt))


@dataclass
class TempDbSandbox:
    """One throwaway directory plus an empty sqlite file per test case."""

    prefix: str = "contract_hub_tests"
    db_name: str = "contract_hub_test.db"
    temp_dir: str = field(init=False)
    db_path: str = field(init=False)

    def __post_init__(self) -> None:
        folder = _TEMP_ROOT / f"{self.prefix}_{uuid.uuid4().hex}"
        folder.mkdir(parents=True, exist_ok=False)
        self.temp_dir = str(folder)
        self.db_path = str(folder / self.db_name)
        open_sqlite_temp_connection(self.db_path).close()

    def make_config(self, base_config, **overrides):
        attrs = {
            "DATABASE_DIR": self.temp_dir,
            "DB_PATH": self.db_path,
        }
        attrs.update(overrides)
        return type("TempConfig", (base_config,), attrs)

    def cleanup(self) -> None:
        db_file = Path(self.db_path)
        for suffix in ("", *_SQLITE_SIDECARS):
            target = db_file.with_name(db_file.name + suffix)
            _retry(lambda: target.unlink(missing_ok=True))
        _retry(lambda: shutil.rmtree(self.temp_dir))
