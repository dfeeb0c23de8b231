"""Refunds repository - persistence for refund requests.

Uses raw SQL with psycopg2 (no ORM). Status writes carry a WHERE guard on
the expected source status so a stale caller can never move a refund
backwards; callers check the returned flag.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

ACTIVE_STATUSES = ("pending", "processing")

_COLUMNS = """
    id, refund_for, refund_for_id, payment_id, requested_by,
    amount_cents, original_amount_cents, currency, reason, notes,
    status, external_payment_id, external_refund_id, error_message,
    retry_count, cancelled_by, requested_at, processed_at, completed_at,
    updated_at, submitted_at, submission_generation
"""


def _row_to_refund(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "refund_for": row[1],
        "refund_for_id": str(row[2]),
        "payment_id": str(row[3]),
        "requested_by": str(row[4]),
        "amount_cents": row[5],
        "original_amount_cents": row[6],
        "currency": row[7],
        "reason": row[8],
        "notes": row[9],
        "status": row[10],
        "external_payment_id": row[11],
        "external_refund_id": row[12],
        "error_message": row[13],
        "retry_count": row[14],
        "cancelled_by": str(row[15]) if row[15] else None,
        "requested_at": row[16],
        "processed_at": row[17],
        "completed_at": row[18],
        "updated_at": row[19],
        "submitted_at": row[20],
        "submission_generation": row[21],
    }


def insert_refund(
    cur: PgCursor,
    *,
    refund_for: str,
    refund_for_id: str,
    payment_id: str,
    requested_by: str,
    amount_cents: int,
    original_amount_cents: int,
    currency: str,
    reason: str,
    notes: str | None,
    external_payment_id: str,
) -> dict[str, Any] | None:
    """Insert a new pending refund request.

    The partial unique index uq_refunds_active_resource allows one
    pending/processing refund per resource; a conflicting insert is
    silently skipped.

    Args:
        cur: Database cursor (within transaction).
        refund_for: 'order' or 'booking'.
        refund_for_id: Order or booking UUID.
        payment_id: Payment UUID being refunded.
        requested_by: Requesting user UUID.
        amount_cents: Refund amount in cents.
        original_amount_cents: Original payment amount in cents.
        currency: Currency code.
        reason: Refund reason code.
        notes: Optional requester notes.
        external_payment_id: Gateway payment identifier.

    Returns:
        The created refund dict, or None if an active refund already exists.
    """
    cur.execute(
        f"""
        INSERT INTO refunds (
            refund_for, refund_for_id, payment_id, requested_by,
            amount_cents, original_amount_cents, currency, reason, notes,
            status, external_payment_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 'pending', %s)
        ON CONFLICT (refund_for, refund_for_id)
            WHERE status IN ('pending', 'processing')
            DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (
            refund_for,
            refund_for_id,
            payment_id,
            requested_by,
            amount_cents,
            original_amount_cents,
            currency,
            reason,
            notes,
            external_payment_id,
        ),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_refund(row)


def get_refund(
    cur: PgCursor,
    refund_id: str,
    *,
    lock: bool = False,
) -> dict[str, Any] | None:
    """Fetch a refund by ID.

    Args:
        cur: Database cursor.
        refund_id: Refund UUID.
        lock: If True, lock the row FOR UPDATE.

    Returns:
        Refund dict or None if not found.
    """
    suffix = " FOR UPDATE" if lock else ""
    cur.execute(
        f"SELECT {_COLUMNS} FROM refunds WHERE id = %s{suffix}",
        (refund_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_refund(row)


def get_refund_by_external_refund_id(
    cur: PgCursor,
    external_refund_id: str,
) -> dict[str, Any] | None:
    """Fetch a refund by the gateway's refund identifier."""
    cur.execute(
        f"SELECT {_COLUMNS} FROM refunds WHERE external_refund_id = %s",
        (external_refund_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_refund(row)


def has_active_refund(cur: PgCursor, refund_for: str, refund_for_id: str) -> bool:
    """Check whether a pending/processing refund exists for the resource."""
    cur.execute(
        """
        SELECT EXISTS (
            SELECT 1 FROM refunds
            WHERE refund_for = %s
              AND refund_for_id = %s
              AND status = ANY(%s)
        )
        """,
        (refund_for, refund_for_id, list(ACTIVE_STATUSES)),
    )
    row = cur.fetchone()
    return bool(row[0]) if row else False


def list_refunds_for_resource(
    cur: PgCursor,
    refund_for: str,
    refund_for_id: str,
) -> list[dict[str, Any]]:
    """List all refunds for an order or booking, newest first."""
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM refunds
        WHERE refund_for = %s AND refund_for_id = %s
        ORDER BY requested_at DESC
        """,
        (refund_for, refund_for_id),
    )
    return [_row_to_refund(row) for row in cur.fetchall()]


def list_refunds_for_user(
    cur: PgCursor,
    user_id: str,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """List refunds requested by a user, newest first."""
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM refunds
        WHERE requested_by = %s
        ORDER BY requested_at DESC
        LIMIT %s OFFSET %s
        """,
        (user_id, limit, offset),
    )
    return [_row_to_refund(row) for row in cur.fetchall()]


def refund_stats_for_business(
    cur: PgCursor,
    business_id: str,
    start_date: date,
    end_date: date,
) -> list[dict[str, Any]]:
    """Aggregate refund counts and sums per resource kind for a business.

    Only refunds requested within [start_date, end_date] (inclusive days)
    are counted.
    """
    cur.execute(
        """
        SELECT
            r.refund_for,
            COUNT(*),
            COUNT(*) FILTER (WHERE r.status = 'succeeded'),
            COUNT(*) FILTER (WHERE r.status = 'pending'),
            COUNT(*) FILTER (WHERE r.status = 'processing'),
            COUNT(*) FILTER (WHERE r.status = 'failed'),
            COUNT(*) FILTER (WHERE r.status = 'cancelled'),
            COALESCE(SUM(r.amount_cents) FILTER (WHERE r.status = 'succeeded'), 0)
        FROM refunds r
        LEFT JOIN orders o
            ON r.refund_for = 'order' AND r.refund_for_id = o.id
        LEFT JOIN bookings b
            ON r.refund_for = 'booking' AND r.refund_for_id = b.id
        WHERE (o.business_id = %s OR b.business_id = %s)
          AND r.requested_at >= %s
          AND r.requested_at < %s + interval '1 day'
        GROUP BY r.refund_for
        ORDER BY r.refund_for
        """,
        (business_id, business_id, start_date, end_date),
    )
    return [
        {
            "refund_for": row[0],
            "total_refunds": row[1],
            "completed_refunds": row[2],
            "pending_refunds": row[3],
            "processing_refunds": row[4],
            "failed_refunds": row[5],
            "cancelled_refunds": row[6],
            "total_refunded_cents": int(row[7]),
        }
        for row in cur.fetchall()
    ]


def mark_submission_started(cur: PgCursor, refund_id: str) -> bool:
    """Stamp submitted_at before the gateway call; blocks later cancellation.

    A failed refund is reclaimed as pending, which puts it back under the
    one-active-refund index for the duration of the gateway call.
    """
    cur.execute(
        """
        UPDATE refunds
        SET status = 'pending',
            submitted_at = now(),
            updated_at = now()
        WHERE id = %s AND status IN ('pending', 'failed')
        """,
        (refund_id,),
    )
    return cur.rowcount == 1


def mark_processing(
    cur: PgCursor,
    refund_id: str,
    *,
    external_refund_id: str,
    gateway_response: dict[str, Any],
) -> bool:
    """Move a pending/failed refund to processing after gateway acceptance."""
    cur.execute(
        """
        UPDATE refunds
        SET status = 'processing',
            external_refund_id = %s,
            gateway_response = %s::jsonb,
            error_message = NULL,
            processed_at = now(),
            updated_at = now()
        WHERE id = %s AND status IN ('pending', 'failed')
        """,
        (external_refund_id, json.dumps(gateway_response), refund_id),
    )
    return cur.rowcount == 1


def record_gateway_failure(
    cur: PgCursor,
    refund_id: str,
    *,
    error_message: str,
) -> int | None:
    """Record a failed gateway submission.

    Increments retry_count and leaves the refund in 'failed' so it can be
    resubmitted. Only pending/failed refunds are touched.

    Returns:
        The new retry_count, or None if the refund was not in a
        submittable status.
    """
    cur.execute(
        """
        UPDATE refunds
        SET status = 'failed',
            retry_count = retry_count + 1,
            error_message = %s,
            updated_at = now()
        WHERE id = %s AND status IN ('pending', 'failed')
        RETURNING retry_count
        """,
        (error_message, refund_id),
    )
    row = cur.fetchone()
    return row[0] if row else None


def record_external_refund(
    cur: PgCursor,
    refund_id: str,
    *,
    external_refund_id: str,
    gateway_response: dict[str, Any],
) -> bool:
    """Keep a gateway refund that could not move the refund to processing.

    The refund goes back to 'failed' with the accepted gateway id stored,
    so the money movement stays traceable and a late result for it is
    matched to this refund.
    """
    cur.execute(
        """
        UPDATE refunds
        SET status = 'failed',
            external_refund_id = %s,
            gateway_response = %s::jsonb,
            error_message = 'Gateway refund accepted while another refund was active',
            updated_at = now()
        WHERE id = %s AND status IN ('pending', 'failed')
        """,
        (external_refund_id, json.dumps(gateway_response), refund_id),
    )
    return cur.rowcount == 1


def mark_succeeded(
    cur: PgCursor,
    refund_id: str,
    *,
    gateway_response: dict[str, Any] | None = None,
) -> bool:
    """Move a processing refund to succeeded and stamp completed_at."""
    cur.execute(
        """
        UPDATE refunds
        SET status = 'succeeded',
            gateway_response = COALESCE(%s::jsonb, gateway_response),
            error_message = NULL,
            completed_at = now(),
            updated_at = now()
        WHERE id = %s AND status = 'processing'
        """,
        (
            json.dumps(gateway_response) if gateway_response is not None else None,
            refund_id,
        ),
    )
    return cur.rowcount == 1


def mark_failed(
    cur: PgCursor,
    refund_id: str,
    *,
    error_message: str | None,
    gateway_response: dict[str, Any] | None = None,
) -> bool:
    """Move a processing refund to failed after the gateway reported failure.

    Bumps submission_generation: the gateway refund is terminal, so a
    resubmission needs a fresh idempotency key.
    """
    cur.execute(
        """
        UPDATE refunds
        SET status = 'failed',
            gateway_response = COALESCE(%s::jsonb, gateway_response),
            error_message = %s,
            submission_generation = submission_generation + 1,
            updated_at = now()
        WHERE id = %s AND status = 'processing'
        """,
        (
            json.dumps(gateway_response) if gateway_response is not None else None,
            error_message,
            refund_id,
        ),
    )
    return cur.rowcount == 1


def mark_cancelled(cur: PgCursor, refund_id: str, *, cancelled_by: str) -> bool:
    """Cancel a refund that was never submitted to the gateway."""
    cur.execute(
        """
        UPDATE refunds
        SET status = 'cancelled',
            cancelled_by = %s,
            updated_at = now()
        WHERE id = %s AND status = 'pending' AND submitted_at IS NULL
        """,
        (cancelled_by, refund_id),
    )
    return cur.rowcount == 1
