from __future__ import annotations

from typing import Any, Dict, List, Tuple

from contract_hub.infrastructure.repositories.base import BaseRepository, utc_now_iso


class EngagementRequestRepository(BaseRepository):
    table = "engagement_requests"
    sortable_columns = {
        "created_at": "created_at",
        "budget_amount": "budget_amount",
        "status": "status",
        "start_time": "start_time",
    }

    def create(self, db, values: Dict[str, Any]) -> int:
        now = utc_now_iso()
        row = dict(values)
        row.setdefault("status", "pending")
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        return self.insert_row(db, row)

    def get_by_id(self, db, request_id: int) -> dict | None:
        row = db.execute("SELECT * FROM engagement_requests WHERE id = ? LIMIT 1", (request_id,)).fetchone()
        return self.row_to_dict(row)

    def find_pending_for_provider(self, db, contract_id: int, provider_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM engagement_requests
            WHERE contract_id = ? AND provider_id = ? AND status = 'pending'
            LIMIT 1
            """,
            (contract_id, provider_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_page(
        self,
        db,
        *,
        contract_id: int | None = None,
        status: str | None = None,
        provider_id: int | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> Tuple[List[dict], int]:
        clauses = ["1 = 1"]
        params: List[Any] = []
        if contract_id is not None:
            clauses.append("contract_id = ?")
            params.append(contract_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if provider_id is not None:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        where = " AND ".join(clauses)
        total = self.count(db, where, params)
        rows = db.execute(
            f"""
            SELECT *
            FROM engagement_requests
            WHERE {where}
            ORDER BY {self.order_by(sort)}
            LIMIT ? OFFSET ?
            """,
            (*params, int(limit), int((page - 1) * limit)),
        ).fetchall()
        return self.rows_to_dicts(rows), total

    def accept(self, db, request_id: int, *, decided_by: int, notes: str | None, decided_at: str) -> bool:
        cursor = db.execute(
            """
            UPDATE engagement_requests
            SET status = 'accepted', decided_by = ?, client_notes = ?, decided_at = ?, updated_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (decided_by, notes, decided_at, decided_at, request_id),
        )
        return int(cursor.rowcount or 0) == 1

    def reject(self, db, request_id: int, *, decided_by: int | None, reason: str, decided_at: str) -> bool:
        cursor = db.execute(
            """
            UPDATE engagement_requests
            SET status = 'rejected', decided_by = ?, rejection_reason = ?, decided_at = ?, updated_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (decided_by, reason, decided_at, decided_at, request_id),
        )
        return int(cursor.rowcount or 0) == 1

    def withdraw(self, db, request_id: int, *, withdrawn_at: str) -> bool:
        cursor = db.execute(
            """
            UPDATE engagement_requests
            SET status = 'withdrawn', withdrawn_at = ?, updated_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (withdrawn_at, withdrawn_at, request_id),
        )
        return int(cursor.rowcount or 0) == 1

    def reject_other_pending(
        self,
        db,
        contract_id: int,
        *,
        except_request_id: int,
        decided_by: int | None,
        reason: str,
        decided_at: str,
    ) -> List[int]:
        rows = db.execute(
            """
            SELECT id
            FROM engagement_requests
            WHERE contract_id = ? AND status = 'pending' AND id <> ?
            ORDER BY id
            """,
            (contract_id, except_request_id),
        ).fetchall()
        request_ids = [int(row["id"]) for row in rows]
        for request_id in request_ids:
            self.reject(db, request_id, decided_by=decided_by, reason=reason, decided_at=decided_at)
        return request_ids

    def count_by_status(self, db, *, provider_id: int | None = None) -> Dict[str, int]:
        clauses = ["1 = 1"]
        params: List[Any] = []
        if provider_id is not None:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        rows = db.execute(
            f"""
            SELECT status, COUNT(*) AS total
            FROM engagement_requests
            WHERE {" AND ".join(clauses)}
            GROUP BY status
            """,
            tuple(params),
        ).fetchall()
        return {str(row["status"]): int(row["total"]) for row in rows}
