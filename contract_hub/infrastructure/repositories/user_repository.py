from __future__ import annotations

from typing import Any, Dict, List, Tuple

from contract_hub.infrastructure.repositories.base import BaseRepository, utc_now_iso


class UserRepository(BaseRepository):
    table = "users"
    sortable_columns = {
        "created_at": "created_at",
        "email": "email",
        "role": "role",
        "display_name": "display_name",
    }
    default_sort = (("email", "ASC"),)

    def create(self, db, *, email: str, role: str, display_name: str | None, is_active: bool = True) -> int:
        now = utc_now_iso()
        return self.insert_row(
            db,
            {
                "email": email,
                "role": role,
                "display_name": display_name,
                "is_active": 1 if is_active else 0,
                "created_at": now,
                "updated_at": now,
            },
        )

    def get_by_id(self, db, user_id: int) -> dict | None:
        row = db.execute("SELECT * FROM users WHERE id = ? LIMIT 1", (user_id,)).fetchone()
        return self.row_to_dict(row)

    def get_by_email(self, db, email: str) -> dict | None:
        row = db.execute("SELECT * FROM users WHERE email = ? LIMIT 1", (email,)).fetchone()
        return self.row_to_dict(row)

    def update_fields(self, db, user_id: int, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        updates = [f"{key} = ?" for key in fields.keys()]
        db.execute(
            f"UPDATE users SET {', '.join(updates)}, updated_at = ? WHERE id = ?",
            (*fields.values(), utc_now_iso(), user_id),
        )

    def search(
        self,
        db,
        *,
        role: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[dict], int]:
        clauses = ["1 = 1"]
        params: List[Any] = []
        if role:
            clauses.append("role = ?")
            params.append(role)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(1 if is_active else 0)
        if search:
            needle = f"%{search.strip().lower()}%"
            clauses.append("(LOWER(email) LIKE ? OR LOWER(COALESCE(display_name, '')) LIKE ?)")
            params.extend([needle, needle])
        where = " AND ".join(clauses)
        total = self.count(db, where, params)
        rows = db.execute(
            f"""
            SELECT *
            FROM users
            WHERE {where}
            ORDER BY {self.order_by(sort)}
            LIMIT ? OFFSET ?
            """,
            (*params, int(limit), int((page - 1) * limit)),
        ).fetchall()
        return self.rows_to_dicts(rows), total

    def count_by_role(self, db) -> Dict[str, int]:
        rows = db.execute(
            "SELECT role, COUNT(*) AS total FROM users WHERE is_active = 1 GROUP BY role"
        ).fetchall()
        return {str(row["role"]): int(row["total"]) for row in rows}

    def report_by_role(self, db, *, created_from: str | None = None, created_to: str | None = None) -> List[dict]:
        clauses = ["1 = 1"]
        params: List[Any] = []
        self.created_window(clauses, params, created_from, created_to)
        rows = db.execute(
            f"""
            SELECT role,
                   SUM(CASE WHEN is_active = 1 THEN 1 ELSE 0 END) AS active,
                   SUM(CASE WHEN is_active = 1 THEN 0 ELSE 1 END) AS inactive,
                   COUNT(*) AS total
            FROM users
            WHERE {" AND ".join(clauses)}
            GROUP BY role
            ORDER BY role
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)
