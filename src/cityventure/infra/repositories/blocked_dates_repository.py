"""Room blocked dates repository - admin-created unavailability windows.

Uses raw SQL with psycopg2 (no ORM). Stored ranges are inclusive
[start_date, end_date]; lookups take a half-open [start, end) query range.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

BLOCK_REASONS = ("Maintenance", "Renovation", "Private", "Seasonal", "Other")

_COLUMNS = """
    id, room_id, business_id, start_date, end_date, block_reason, notes,
    created_by, created_at
"""


def _row_to_block(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "room_id": str(row[1]),
        "business_id": str(row[2]),
        "start_date": row[3],
        "end_date": row[4],
        "block_reason": row[5],
        "notes": row[6],
        "created_by": str(row[7]) if row[7] else None,
        "created_at": row[8],
    }


def insert_blocked_date(
    cur: PgCursor,
    *,
    room_id: str,
    business_id: str,
    start_date: date,
    end_date: date,
    block_reason: str,
    notes: str | None,
    created_by: str | None,
) -> dict[str, Any]:
    """Insert a blocked date range for a room.

    The no_room_block_overlap exclusion constraint rejects overlapping
    ranges for the same room with psycopg2.errors.ExclusionViolation.

    Returns:
        The created block dict.
    """
    cur.execute(
        f"""
        INSERT INTO room_blocked_dates (
            room_id, business_id, start_date, end_date, block_reason,
            notes, created_by
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING {_COLUMNS}
        """,
        (room_id, business_id, start_date, end_date, block_reason, notes, created_by),
    )
    return _row_to_block(cur.fetchone())


def get_blocked_date(cur: PgCursor, block_id: str) -> dict[str, Any] | None:
    """Fetch a blocked date range by ID."""
    cur.execute(
        f"SELECT {_COLUMNS} FROM room_blocked_dates WHERE id = %s",
        (block_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_block(row)


def delete_blocked_date(cur: PgCursor, *, block_id: str, business_id: str) -> bool:
    """Delete (unblock) a blocked date range scoped to a business.

    Returns:
        True if a row was deleted.
    """
    cur.execute(
        "DELETE FROM room_blocked_dates WHERE id = %s AND business_id = %s",
        (block_id, business_id),
    )
    return cur.rowcount == 1


def find_overlapping_block(
    cur: PgCursor,
    *,
    room_id: str,
    start: date,
    end: date,
) -> dict[str, Any] | None:
    """Find the first block on a room overlapping the half-open range [start, end).

    An inclusive block [bs, be] overlaps [start, end) iff
    bs < end AND be >= start.
    """
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM room_blocked_dates
        WHERE room_id = %s
          AND start_date < %s
          AND end_date >= %s
        ORDER BY start_date
        LIMIT 1
        """,
        (room_id, end, start),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_block(row)


def list_blocked_dates(
    cur: PgCursor,
    *,
    business_id: str,
    room_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[dict[str, Any]]:
    """List blocks for a business, optionally by room and overlapping [start, end)."""
    conditions = ["business_id = %s"]
    params: list = [business_id]

    if room_id is not None:
        conditions.append("room_id = %s")
        params.append(room_id)
    if end is not None:
        conditions.append("start_date < %s")
        params.append(end)
    if start is not None:
        conditions.append("end_date >= %s")
        params.append(start)

    where = " AND ".join(conditions)
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM room_blocked_dates
        WHERE {where}
        ORDER BY room_id, start_date
        """,
        params,
    )
    return [_row_to_block(row) for row in cur.fetchall()]
