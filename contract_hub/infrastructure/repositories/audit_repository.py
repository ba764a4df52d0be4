from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

from contract_hub.infrastructure.repositories.base import BaseRepository, utc_now_iso


class AuditEventRepository(BaseRepository):
    table = "audit_events"
    sortable_columns = {"occurred_at": "occurred_at", "action": "action", "entity": "entity"}
    default_sort = (("occurred_at", "DESC"),)

    def add_event(
        self,
        db,
        *,
        entity: str,
        entity_id: int,
        action: str,
        actor_id: int | None,
        actor_role: str | None,
        from_status: str | None = None,
        to_status: str | None = None,
        reason: str | None = None,
        details: Dict[str, Any] | None = None,
        occurred_at: str | None = None,
    ) -> int:
        return self.insert_row(
            db,
            {
                "entity": entity,
                "entity_id": entity_id,
                "action": action,
                "actor_id": actor_id,
                "actor_role": actor_role,
                "from_status": from_status,
                "to_status": to_status,
                "reason": reason,
                "details_json": json.dumps(details, sort_keys=True, default=str) if details else None,
                "occurred_at": occurred_at or utc_now_iso(),
            },
        )

    @staticmethod
    def _decode(row: dict) -> dict:
        raw = row.pop("details_json", None)
        row["details"] = json.loads(raw) if raw else {}
        return row

    def list_for_entity(self, db, *, entity: str, entity_id: int, limit: int = 200) -> List[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM audit_events
            WHERE entity = ? AND entity_id = ?
            ORDER BY occurred_at ASC, id ASC
            LIMIT ?
            """,
            (entity, entity_id, int(limit)),
        ).fetchall()
        return [self._decode(row) for row in self.rows_to_dicts(rows)]

    def list_for_contract(self, db, contract_id: int, *, limit: int = 500) -> List[dict]:
        """Contract events plus the events of its offers and requests, oldest first."""
        rows = db.execute(
            """
            SELECT *
            FROM audit_events
            WHERE (entity = 'contract' AND entity_id = ?)
               OR (entity = 'offer' AND entity_id IN (SELECT id FROM offers WHERE contract_id = ?))
               OR (entity = 'request' AND entity_id IN (SELECT id FROM engagement_requests WHERE contract_id = ?))
            ORDER BY occurred_at ASC, id ASC
            LIMIT ?
            """,
            (contract_id, contract_id, contract_id, int(limit)),
        ).fetchall()
        return [self._decode(row) for row in self.rows_to_dicts(rows)]

    def list_page(
        self,
        db,
        *,
        entity: str | None = None,
        action: str | None = None,
        actor_id: int | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[dict], int]:
        clauses = ["1 = 1"]
        params: List[Any] = []
        if entity:
            clauses.append("entity = ?")
            params.append(entity)
        if action:
            clauses.append("action = ?")
            params.append(action)
        if actor_id is not None:
            clauses.append("actor_id = ?")
            params.append(actor_id)
        where = " AND ".join(clauses)
        total = self.count(db, where, params)
        rows = db.execute(
            f"""
            SELECT *
            FROM audit_events
            WHERE {where}
            ORDER BY {self.order_by(sort)}
            LIMIT ? OFFSET ?
            """,
            (*params, int(limit), int((page - 1) * limit)),
        ).fetchall()
        return [self._decode(row) for row in self.rows_to_dicts(rows)], total

    def count_actions_since(self, db, *, actions: List[str], since: str) -> Dict[str, int]:
        if not actions:
            return {}
        rows = db.execute(
            f"""
            SELECT action, COUNT(*) AS total
            FROM audit_events
            WHERE entity = 'contract' AND occurred_at >= ? AND action IN ({", ".join("?" for _ in actions)})
            GROUP BY action
            """,
            (since, *actions),
        ).fetchall()
        counts = {action: 0 for action in actions}
        for row in rows:
            counts[str(row["action"])] = int(row["total"])
        return counts
