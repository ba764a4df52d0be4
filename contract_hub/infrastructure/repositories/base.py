from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Sequence, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class BaseRepository:
    table: str = ""
    # API sort key -> column; default_sort applies when nothing valid is requested.
    sortable_columns: Dict[str, str] = {}
    default_sort: Tuple[Tuple[str, str], ...] = (("created_at", "DESC"),)

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def row_to_dict(row: Any) -> dict | None:
        return dict(row) if row else None

    @staticmethod
    def inserted_id(cursor) -> int:
        rows = cursor.fetchall()
        row = rows[0]
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def for_update(db) -> str:
        return " FOR UPDATE" if getattr(db, "backend", "") == "postgres" else ""

    def order_by(self, sort: str | None) -> str:
        """Translate ``-created_at,title`` style sort strings into an ORDER BY clause."""
        terms: List[str] = []
        for raw_field in str(sort or "").split(","):
            field = raw_field.strip()
            if not field:
                continue
            direction = "DESC" if field.startswith("-") else "ASC"
            column = self.sortable_columns.get(field.lstrip("-+"))
            if column:
                terms.append(f"{column} {direction}")
        if not terms:
            terms = [f"{self.sortable_columns.get(key, key)} {direction}" for key, direction in self.default_sort]
        terms.append("id DESC" if terms[0].endswith("DESC") else "id ASC")
        return ", ".join(terms)

    @staticmethod
    def created_window(
        clauses: List[str],
        params: List[Any],
        created_from: str | None,
        created_to: str | None,
        *,
        column: str = "created_at",
    ) -> None:
        """Append a half-open ``[created_from, created_to)`` filter on an ISO timestamp column."""
        if created_from:
            clauses.append(f"{column} >= ?")
            params.append(created_from)
        if created_to:
            clauses.append(f"{column} < ?")
            params.append(created_to)

    def count(self, db, where: str, params: Sequence[Any]) -> int:
        row = db.execute(f"SELECT COUNT(*) AS total FROM {self.table} WHERE {where}", tuple(params)).fetchone()
        if not row:
            return 0
        return int(row["total"] if isinstance(row, dict) else row[0])

    def insert_row(self, db, values: Dict[str, Any]) -> int:
        columns = list(values.keys())
        placeholders = ", ".join("?" for _ in columns)
        cursor = db.execute(
            f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING id",
            tuple(values[column] for column in columns),
        )
        return self.inserted_id(cursor)
