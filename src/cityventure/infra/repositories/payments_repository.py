"""Payments repository - payment records referenced by refunds.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

VALID_STATUSES = {"pending", "paid", "failed", "refunded"}


def get_payment(cur: PgCursor, payment_id: str) -> dict[str, Any] | None:
    """Get a payment by ID.

    Args:
        cur: Database cursor.
        payment_id: Payment UUID.

    Returns:
        Dict with id, payment_for, payment_for_id, payment_method, status,
        amount_cents, currency, external_payment_id or None if not found.
    """
    cur.execute(
        """
        SELECT id, payment_for, payment_for_id, payment_method, status,
               amount_cents, currency, external_payment_id
        FROM payments
        WHERE id = %s
        """,
        (payment_id,),
    )
    row = cur.fetchone()

    if row is None:
        return None

    return {
        "id": str(row[0]),
        "payment_for": row[1],
        "payment_for_id": str(row[2]),
        "payment_method": row[3],
        "status": row[4],
        "amount_cents": row[5],
        "currency": row[6],
        "external_payment_id": row[7],
    }


def update_payment_status(
    cur: PgCursor,
    *,
    payment_id: str,
    status: str,
    note: str | None = None,
) -> bool:
    """Update payment status.

    No-op when the payment is already at the target status.

    Args:
        cur: Database cursor.
        payment_id: Payment UUID.
        status: New status (pending, paid, failed, refunded).
        note: Optional note merged into metadata.status_note.

    Returns:
        True if the row changed.

    Raises:
        ValueError: If status is not valid.
    """
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid status: {status}. Must be one of {VALID_STATUSES}")

    cur.execute(
        """
        UPDATE payments
        SET status = %s,
            metadata = CASE
                WHEN %s::text IS NULL THEN metadata
                ELSE COALESCE(metadata, '{}'::jsonb)
                     || jsonb_build_object('status_note', %s::text)
            END,
            updated_at = now()
        WHERE id = %s AND status <> %s
        """,
        (status, note, note, payment_id, status),
    )
    return cur.rowcount == 1
