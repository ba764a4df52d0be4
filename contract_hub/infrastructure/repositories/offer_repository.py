from __future__ import annotations

from typing import Any, Dict, List, Tuple

from contract_hub.infrastructure.repositories.base import BaseRepository, utc_now_iso


class OfferRepository(BaseRepository):
    table = "offers"
    sortable_columns = {
        "created_at": "created_at",
        "amount": "amount",
        "status": "status",
        "proposed_start_date": "proposed_start_date",
    }

    def create(self, db, values: Dict[str, Any]) -> int:
        now = utc_now_iso()
        row = dict(values)
        row.setdefault("status", "pending")
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        return self.insert_row(db, row)

    def get_by_id(self, db, offer_id: int) -> dict | None:
        row = db.execute("SELECT * FROM offers WHERE id = ? LIMIT 1", (offer_id,)).fetchone()
        return self.row_to_dict(row)

    def find_live_for_provider(self, db, contract_id: int, provider_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM offers
            WHERE contract_id = ? AND provider_id = ? AND status IN ('pending', 'selected')
            LIMIT 1
            """,
            (contract_id, provider_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_for_contract(
        self,
        db,
        contract_id: int,
        *,
        status: str | None = None,
        provider_id: int | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> Tuple[List[dict], int]:
        clauses = ["contract_id = ?"]
        params: List[Any] = [contract_id]
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
            FROM offers
            WHERE {where}
            ORDER BY {self.order_by(sort)}
            LIMIT ? OFFSET ?
            """,
            (*params, int(limit), int((page - 1) * limit)),
        ).fetchall()
        return self.rows_to_dicts(rows), total

    def decide(
        self,
        db,
        offer_id: int,
        *,
        to_status: str,
        decided_by: int | None,
        notes: str | None,
        decided_at: str,
    ) -> bool:
        """Move a pending offer to its final status. False if it is no longer pending."""
        cursor = db.execute(
            """
            UPDATE offers
            SET status = ?, decided_by = ?, decision_notes = ?, decided_at = ?, updated_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (to_status, decided_by, notes, decided_at, decided_at, offer_id),
        )
        return int(cursor.rowcount or 0) == 1

    def withdraw(self, db, offer_id: int, *, withdrawn_at: str) -> bool:
        cursor = db.execute(
            """
            UPDATE offers
            SET status = 'withdrawn', withdrawn_at = ?, updated_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (withdrawn_at, withdrawn_at, offer_id),
        )
        return int(cursor.rowcount or 0) == 1

    def reject_pending(
        self,
        db,
        contract_id: int,
        *,
        reason: str,
        decided_by: int | None,
        decided_at: str,
        except_offer_id: int | None = None,
    ) -> List[int]:
        """Reject every pending offer on the contract and return the affected ids."""
        params: List[Any] = [contract_id]
        exclusion = ""
        if except_offer_id is not None:
            exclusion = " AND id <> ?"
            params.append(except_offer_id)
        rows = db.execute(
            f"SELECT id FROM offers WHERE contract_id = ? AND status = 'pending'{exclusion} ORDER BY id",
            tuple(params),
        ).fetchall()
        offer_ids = [int(row["id"]) for row in rows]
        if not offer_ids:
            return []
        db.execute(
            f"""
            UPDATE offers
            SET status = 'rejected', decided_by = ?, decision_notes = ?, decided_at = ?, updated_at = ?
            WHERE id IN ({", ".join("?" for _ in offer_ids)}) AND status = 'pending'
            """,
            (decided_by, reason, decided_at, decided_at, *offer_ids),
        )
        return offer_ids

    def count_by_status(self, db, *, provider_id: int | None = None, contract_id: int | None = None) -> Dict[str, int]:
        clauses = ["1 = 1"]
        params: List[Any] = []
        if provider_id is not None:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        if contract_id is not None:
            clauses.append("contract_id = ?")
            params.append(contract_id)
        rows = db.execute(
            f"""
            SELECT status, COUNT(*) AS total
            FROM offers
            WHERE {" AND ".join(clauses)}
            GROUP BY status
            """,
            tuple(params),
        ).fetchall()
        return {str(row["status"]): int(row["total"]) for row in rows}

    def count_decided_since(self, db, *, status: str, since: str) -> int:
        return self.count(db, "status = ? AND decided_at >= ?", (status, since))

    def provider_totals(self, db, *, created_from: str | None = None, created_to: str | None = None) -> dict:
        clauses = ["1 = 1"]
        params: List[Any] = []
        self.created_window(clauses, params, created_from, created_to)
        row = db.execute(
            f"""
            SELECT COUNT(*) AS total_offers,
                   COUNT(DISTINCT provider_id) AS bidding_providers,
                   SUM(CASE WHEN status = 'selected' THEN 1 ELSE 0 END) AS selected_offers,
                   AVG(amount) AS avg_amount
            FROM offers
            WHERE {" AND ".join(clauses)}
            """,
            tuple(params),
        ).fetchone()
        return self.row_to_dict(row) or {}
