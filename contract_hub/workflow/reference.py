from __future__ import annotations

import re
from datetime import datetime, timezone


DEFAULT_PREFIX = "CTR"
_REFERENCE_PATTERN = re.compile(r"^(?P<prefix>[A-Z]{2,10})-(?P<year>\d{4})-(?P<sequence>\d{6,})$")


def format_reference(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{int(year):04d}-{int(sequence):06d}"


def parse_reference(reference: str | None) -> tuple[str, int, int] | None:
    match = _REFERENCE_PATTERN.match(str(reference or "").strip())
    if not match:
        return None
    return match.group("prefix"), int(match.group("year")), int(match.group("sequence"))


def next_reference_number(db, *, prefix: str = DEFAULT_PREFIX, now: datetime | None = None) -> str:
    """Allocate the next reference for the current year.

    Must run inside the transaction that inserts the contract so a rolled-back
    creation also releases its sequence value. The upsert is a single
    statement, so concurrent writers never observe the same value.
    """
    year = (now or datetime.now(timezone.utc)).year
    rows = db.execute(
        """
        INSERT INTO reference_sequences (year, last_value)
        VALUES (?, 1)
        ON CONFLICT (year) DO UPDATE SET last_value = reference_sequences.last_value + 1
        RETURNING last_value
        """,
        (year,),
    ).fetchall()
    row = rows[0]
    sequence = int(row["last_value"] if isinstance(row, dict) else row[0])
    return format_reference(str(prefix or DEFAULT_PREFIX).strip().upper(), year, sequence)
