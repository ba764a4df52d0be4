from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from contract_hub.infrastructure.repositories.base import BaseRepository, utc_now_iso


_UPDATABLE_COLUMNS = {
    "title",
    "contract_type",
    "description",
    "target_conditions",
    "target_persons",
    "budget_minimum",
    "budget_maximum",
    "currency",
    "start_date",
    "end_date",
    "status",
    "workflow",
    "assigned_provider_id",
    "cancellation_reason",
    "cancelled_at",
    "is_deleted",
    "deleted_at",
    "deleted_by",
}


class ContractRepository(BaseRepository):
    table = "contracts"
    sortable_columns = {
        "created_at": "created_at",
        "updated_at": "updated_at",
        "start_date": "start_date",
        "end_date": "end_date",
        "title": "title",
        "reference_number": "reference_number",
        "status": "status",
        "budget_maximum": "budget_maximum",
    }

    def create(self, db, values: Dict[str, Any]) -> int:
        now = utc_now_iso()
        row = dict(values)
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        return self.insert_row(db, row)

    def get_by_id(self, db, contract_id: int, *, include_deleted: bool = False, lock: bool = False) -> dict | None:
        deleted_clause = "" if include_deleted else " AND is_deleted = 0"
        row = db.execute(
            f"""
            SELECT *
            FROM contracts
            WHERE id = ?{deleted_clause}
            LIMIT 1{self.for_update(db) if lock else ""}
            """,
            (contract_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def guarded_update(
        self,
        db,
        contract_id: int,
        *,
        expected_status: str,
        expected_version: int,
        changes: Dict[str, Any],
    ) -> bool:
        """Apply ``changes`` only if the row still has the status and version read earlier.

        Returns False when another writer got there first; the caller decides
        which error that maps to.
        """
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"contract columns not updatable: {sorted(unknown)}")
        assignments = [f"{column} = ?" for column in changes]
        assignments.extend(["version = version + 1", "updated_at = ?"])
        cursor = db.execute(
            f"""
            UPDATE contracts
            SET {", ".join(assignments)}
            WHERE id = ? AND status = ? AND version = ? AND is_deleted = 0
            """,
            (*changes.values(), utc_now_iso(), contract_id, expected_status, int(expected_version)),
        )
        return int(cursor.rowcount or 0) == 1

    def search(
        self,
        db,
        *,
        statuses: Sequence[str] | None = None,
        client_id: int | None = None,
        visible_to_provider: int | None = None,
        contract_type: str | None = None,
        search: str | None = None,
        start_date_from: str | None = None,
        start_date_to: str | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[dict], int]:
        clauses: List[str] = ["is_deleted = 0"]
        params: List[Any] = []
        if statuses is not None:
            if not statuses:
                return [], 0
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        if visible_to_provider is not None:
            clauses.append("(status = 'open_for_offers' OR assigned_provider_id = ?)")
            params.append(visible_to_provider)
        if contract_type:
            clauses.append("contract_type = ?")
            params.append(contract_type)
        if search:
            needle = f"%{search.strip().lower()}%"
            clauses.append(
                "(LOWER(title) LIKE ? OR LOWER(reference_number) LIKE ? OR LOWER(description) LIKE ?)"
            )
            params.extend([needle, needle, needle])
        if start_date_from:
            clauses.append("start_date >= ?")
            params.append(start_date_from)
        if start_date_to:
            clauses.append("start_date <= ?")
            params.append(start_date_to)

        where = " AND ".join(clauses)
        total = self.count(db, where, params)
        rows = db.execute(
            f"""
            SELECT *
            FROM contracts
            WHERE {where}
            ORDER BY {self.order_by(sort)}
            LIMIT ? OFFSET ?
            """,
            (*params, int(limit), int((page - 1) * limit)),
        ).fetchall()
        return self.rows_to_dicts(rows), total

    def count_by_status(
        self,
        db,
        *,
        client_id: int | None = None,
        assigned_provider_id: int | None = None,
    ) -> Dict[str, int]:
        clauses = ["is_deleted = 0"]
        params: List[Any] = []
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        if assigned_provider_id is not None:
            clauses.append("assigned_provider_id = ?")
            params.append(assigned_provider_id)
        rows = db.execute(
            f"""
            SELECT status, COUNT(*) AS total
            FROM contracts
            WHERE {" AND ".join(clauses)}
            GROUP BY status
            """,
            tuple(params),
        ).fetchall()
        return {str(row["status"]): int(row["total"]) for row in rows}

    def report_by_status_and_type(
        self,
        db,
        *,
        created_from: str | None = None,
        created_to: str | None = None,
    ) -> List[dict]:
        clauses = ["is_deleted = 0"]
        params: List[Any] = []
        self.created_window(clauses, params, created_from, created_to)
        rows = db.execute(
            f"""
            SELECT status,
                   contract_type,
                   COUNT(*) AS total,
                   SUM(budget_minimum) AS total_min,
                   SUM(budget_maximum) AS total_max,
                   AVG(budget_minimum) AS avg_min,
                   AVG(budget_maximum) AS avg_max,
                   COUNT(assigned_provider_id) AS assigned
            FROM contracts
            WHERE {" AND ".join(clauses)}
            GROUP BY status, contract_type
            ORDER BY status, contract_type
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def summaries_for_user(self, db, user_id: int, *, as_provider: bool = False, limit: int = 50) -> List[dict]:
        column = "assigned_provider_id" if as_provider else "client_id"
        rows = db.execute(
            f"""
            SELECT id, reference_number, title, status, created_at
            FROM contracts
            WHERE {column} = ? AND is_deleted = 0
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (user_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)
