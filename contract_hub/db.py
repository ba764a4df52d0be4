from __future__ import annotations

import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


CONTRACT_STATUS_CHECK = (
    "'draft','pending_procurement','pending_legal','open_for_offers','offer_selected',"
    "'pending_final_approval','final_approved','rejected','cancelled',"
    "'pending_approval','published','searching_provider','provider_assigned','in_progress','completed'"
)
USER_ROLE_CHECK = (
    "'admin','client','service_provider','procurement_manager','legal_counsel','contract_coordinator'"
)


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self.in_transaction = False

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    @contextlib.contextmanager
    def transaction(self):
        """Run the block as one unit of work.

        SQLite takes the write lock up front (BEGIN IMMEDIATE) so two writers on
        the same database serialize instead of failing on lock upgrade. Nested
        calls join the outer transaction.
        """
        if self.in_transaction:
            yield self
            return
        self.execute("BEGIN IMMEDIATE" if self.backend == "sqlite" else "BEGIN")
        self.in_transaction = True
        try:
            yield self
        except BaseException:
            self.in_transaction = False
            self.execute("ROLLBACK")
            raise
        self.in_transaction = False
        self.execute("COMMIT")

    def commit(self):
        if not self.in_transaction:
            self._conn.commit()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_double = False
    in_dollar = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        nxt = sql[i : i + 2]
        if not in_single and not in_double and nxt == "$$":
            in_dollar = not in_dollar
            current.append("$$")
            i += 2
            continue
        if not in_dollar:
            if ch == "'" and not in_double:
                in_single = not in_single
            elif ch == '"' and not in_single:
                in_double = not in_double
            elif ch == ";" and not in_single and not in_double:
                statements.append("".join(current))
                current = []
                i += 1
                continue
        current.append(ch)
        i += 1
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str, *, timeout_seconds: float = 30.0) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: transactions are opened explicitly by Database.transaction().
    conn = sqlite3.connect(db_path, timeout=float(timeout_seconds), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return Database("sqlite", conn)


def _connect_from_config(db_path: str) -> Database:
    timeout = float(current_app.config.get("DB_BUSY_TIMEOUT_SECONDS", 30) or 30)
    return connect_database(db_path, timeout_seconds=timeout)


def get_db():
    if "db" not in g:
        g.db = _connect_from_config(current_app.config["DB_PATH"])
    return g.db


def get_read_db():
    if "db_read" not in g:
        db_path = current_app.config.get("DATABASE_READ_URL") or current_app.config["DB_PATH"]
        g.db_read = _connect_from_config(db_path)
    return g.db_read


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()
    db_read = g.pop("db_read", None)
    if db_read is not None:
        db_read.close()


def init_db():
    init_schema(get_db())


def init_schema(db: Database) -> None:
    if db.backend == "postgres":
        _init_db_postgres(db)
        return
    _init_db_sqlite(db)


def _init_db_sqlite(db):
    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            display_name TEXT,
            role TEXT NOT NULL CHECK (role IN ({USER_ROLE_CHECK})),
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS reference_sequences (
            year INTEGER PRIMARY KEY,
            last_value INTEGER NOT NULL
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS contracts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            reference_number TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            contract_type TEXT NOT NULL,
            description TEXT NOT NULL,
            target_conditions TEXT,
            target_persons INTEGER NOT NULL CHECK (target_persons BETWEEN 1 AND 20),
            budget_minimum REAL NOT NULL,
            budget_maximum REAL NOT NULL,
            currency TEXT NOT NULL DEFAULT 'EUR',
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ({CONTRACT_STATUS_CHECK})),
            workflow TEXT NOT NULL DEFAULT '{{}}',
            client_id INTEGER,
            created_by INTEGER,
            assigned_provider_id INTEGER,
            cancellation_reason TEXT,
            cancelled_at TEXT,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            deleted_by INTEGER,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (budget_minimum >= 0 AND budget_maximum >= budget_minimum),
            CHECK (end_date > start_date)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS offers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            contract_id INTEGER NOT NULL REFERENCES contracts(id),
            provider_id INTEGER NOT NULL,
            amount REAL NOT NULL CHECK (amount >= 0),
            currency TEXT NOT NULL DEFAULT 'EUR',
            proposed_start_date TEXT NOT NULL,
            proposed_end_date TEXT NOT NULL,
            description TEXT NOT NULL,
            deliverables TEXT NOT NULL DEFAULT '[]',
            terms TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','selected','rejected','withdrawn')
            ),
            decided_by INTEGER,
            decided_at TEXT,
            decision_notes TEXT,
            withdrawn_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (proposed_end_date > proposed_start_date)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS engagement_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            contract_id INTEGER NOT NULL REFERENCES contracts(id),
            provider_id INTEGER NOT NULL,
            service_name TEXT NOT NULL,
            budget_amount REAL NOT NULL CHECK (budget_amount >= 0),
            currency TEXT NOT NULL DEFAULT 'EUR',
            number_of_persons INTEGER NOT NULL CHECK (number_of_persons BETWEEN 1 AND 20),
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            description TEXT NOT NULL,
            deliverables TEXT NOT NULL DEFAULT '[]',
            cover_letter TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','accepted','rejected','withdrawn')
            ),
            client_notes TEXT,
            rejection_reason TEXT,
            decided_by INTEGER,
            decided_at TEXT,
            withdrawn_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (end_time > start_time)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity TEXT NOT NULL,
            entity_id INTEGER NOT NULL,
            action TEXT NOT NULL,
            actor_id INTEGER,
            actor_role TEXT,
            from_status TEXT,
            to_status TEXT,
            reason TEXT,
            details_json TEXT,
            occurred_at TEXT NOT NULL
        )
        """
    )

    _create_indexes(db)

    db.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_contracts_reference_immutable
        BEFORE UPDATE OF reference_number ON contracts
        FOR EACH ROW
        WHEN OLD.reference_number IS NOT NEW.reference_number
        BEGIN
            SELECT RAISE(ABORT, 'reference_number is immutable');
        END
        """
    )


def _create_indexes(db) -> None:
    db.execute("CREATE INDEX IF NOT EXISTS ix_contracts_status ON contracts (status, is_deleted)")
    db.execute("CREATE INDEX IF NOT EXISTS ix_contracts_client ON contracts (client_id, is_deleted)")
    db.execute("CREATE INDEX IF NOT EXISTS ix_contracts_provider ON contracts (assigned_provider_id)")
    db.execute("CREATE INDEX IF NOT EXISTS ix_offers_contract_status ON offers (contract_id, status)")
    db.execute("CREATE INDEX IF NOT EXISTS ix_offers_provider ON offers (provider_id, status)")
    db.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_offers_live_provider
        ON offers (contract_id, provider_id)
        WHERE status IN ('pending','selected')
        """
    )
    db.execute(
        "CREATE INDEX IF NOT EXISTS ix_engagement_requests_contract ON engagement_requests (contract_id, status)"
    )
    db.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_engagement_requests_pending_provider
        ON engagement_requests (contract_id, provider_id)
        WHERE status = 'pending'
        """
    )
    db.execute("CREATE INDEX IF NOT EXISTS ix_audit_events_entity ON audit_events (entity, entity_id, occurred_at)")
    db.execute("CREATE INDEX IF NOT EXISTS ix_audit_events_occurred_at ON audit_events (occurred_at)")
    db.execute("CREATE INDEX IF NOT EXISTS ix_users_role ON users (role, is_active)")


def _init_db_postgres(db):
    db.executescript(
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            display_name TEXT,
            role TEXT NOT NULL CHECK (role IN ({USER_ROLE_CHECK})),
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS reference_sequences (
            year INTEGER PRIMARY KEY,
            last_value INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS contracts (
            id BIGSERIAL PRIMARY KEY,
            reference_number TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            contract_type TEXT NOT NULL,
            description TEXT NOT NULL,
            target_conditions TEXT,
            target_persons INTEGER NOT NULL CHECK (target_persons BETWEEN 1 AND 20),
            budget_minimum DOUBLE PRECISION NOT NULL,
            budget_maximum DOUBLE PRECISION NOT NULL,
            currency TEXT NOT NULL DEFAULT 'EUR',
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ({CONTRACT_STATUS_CHECK})),
            workflow TEXT NOT NULL DEFAULT '{{}}',
            client_id BIGINT,
            created_by BIGINT,
            assigned_provider_id BIGINT,
            cancellation_reason TEXT,
            cancelled_at TEXT,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            deleted_by BIGINT,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (budget_minimum >= 0 AND budget_maximum >= budget_minimum),
            CHECK (end_date > start_date)
        );

        CREATE TABLE IF NOT EXISTS offers (
            id BIGSERIAL PRIMARY KEY,
            contract_id BIGINT NOT NULL REFERENCES contracts(id),
            provider_id BIGINT NOT NULL,
            amount DOUBLE PRECISION NOT NULL CHECK (amount >= 0),
            currency TEXT NOT NULL DEFAULT 'EUR',
            proposed_start_date TEXT NOT NULL,
            proposed_end_date TEXT NOT NULL,
            description TEXT NOT NULL,
            deliverables TEXT NOT NULL DEFAULT '[]',
            terms TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','selected','rejected','withdrawn')
            ),
            decided_by BIGINT,
            decided_at TEXT,
            decision_notes TEXT,
            withdrawn_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (proposed_end_date > proposed_start_date)
        );

        CREATE TABLE IF NOT EXISTS engagement_requests (
            id BIGSERIAL PRIMARY KEY,
            contract_id BIGINT NOT NULL REFERENCES contracts(id),
            provider_id BIGINT NOT NULL,
            service_name TEXT NOT NULL,
            budget_amount DOUBLE PRECISION NOT NULL CHECK (budget_amount >= 0),
            currency TEXT NOT NULL DEFAULT 'EUR',
            number_of_persons INTEGER NOT NULL CHECK (number_of_persons BETWEEN 1 AND 20),
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            description TEXT NOT NULL,
            deliverables TEXT NOT NULL DEFAULT '[]',
            cover_letter TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','accepted','rejected','withdrawn')
            ),
            client_notes TEXT,
            rejection_reason TEXT,
            decided_by BIGINT,
            decided_at TEXT,
            withdrawn_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (end_time > start_time)
        );

        CREATE TABLE IF NOT EXISTS audit_events (
            id BIGSERIAL PRIMARY KEY,
            entity TEXT NOT NULL,
            entity_id BIGINT NOT NULL,
            action TEXT NOT NULL,
            actor_id BIGINT,
            actor_role TEXT,
            from_status TEXT,
            to_status TEXT,
            reason TEXT,
            details_json TEXT,
            occurred_at TEXT NOT NULL
        );

        CREATE OR REPLACE FUNCTION contracts_reference_immutable() RETURNS trigger AS $$
        BEGIN
            IF NEW.reference_number IS DISTINCT FROM OLD.reference_number THEN
                RAISE EXCEPTION 'reference_number is immutable';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;

        DROP TRIGGER IF EXISTS trg_contracts_reference_immutable ON contracts;
        CREATE TRIGGER trg_contracts_reference_immutable
            BEFORE UPDATE ON contracts
            FOR EACH ROW EXECUTE FUNCTION contracts_reference_immutable();
        """
    )
    _create_indexes(db)
