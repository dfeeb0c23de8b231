"""Resource ledger repository - orders and bookings as seen by refunds.

Orders and bookings are owned by the ordering/booking flows; this module
only reads what refund eligibility needs and applies the refund/cancellation
side effects.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

RESOURCE_ORDER = "order"
RESOURCE_BOOKING = "booking"

BOOKING_CANCELLED = "Canceled"
ORDER_CANCELLED_BY_USER = "cancelled_by_user"
ORDER_CANCELLED_STATUSES = ("cancelled_by_user", "cancelled_by_business")

_ORDER_QUERY = """
    SELECT o.id, o.business_id, o.user_id, o.status, o.total_amount_cents,
           p.id, p.payment_method, p.status, p.external_payment_id
    FROM orders o
    LEFT JOIN LATERAL (
        SELECT id, payment_method, status, external_payment_id
        FROM payments
        WHERE payment_for = 'order' AND payment_for_id = o.id
        ORDER BY created_at DESC
        LIMIT 1
    ) p ON TRUE
    WHERE o.id = %s
"""

_BOOKING_QUERY = """
    SELECT b.id, b.business_id, b.tourist_user_id, b.booking_status, b.total_price_cents,
           p.id, p.payment_method, p.status, p.external_payment_id
    FROM bookings b
    LEFT JOIN LATERAL (
        SELECT id, payment_method, status, external_payment_id
        FROM payments
        WHERE payment_for = 'booking' AND payment_for_id = b.id
        ORDER BY created_at DESC
        LIMIT 1
    ) p ON TRUE
    WHERE b.id = %s
"""


def get_resource_for_refund_check(
    cur: PgCursor,
    resource_kind: str,
    resource_id: str,
    *,
    lock: bool = False,
) -> dict[str, Any] | None:
    """Load an order or booking with its latest payment.

    Args:
        cur: Database cursor.
        resource_kind: 'order' or 'booking'.
        resource_id: Order or booking UUID.
        lock: If True, lock the order/booking row (not the payment).

    Returns:
        Dict with owner_id, status, payment_id, payment_method,
        payment_status, external_payment_id, total_amount_cents,
        or None if the resource does not exist.

    Raises:
        ValueError: If resource_kind is unknown.
    """
    if resource_kind == RESOURCE_ORDER:
        query, alias = _ORDER_QUERY, "o"
    elif resource_kind == RESOURCE_BOOKING:
        query, alias = _BOOKING_QUERY, "b"
    else:
        raise ValueError(f"Unknown resource kind: {resource_kind}")

    if lock:
        query = query.rstrip() + f" FOR UPDATE OF {alias}"

    cur.execute(query, (resource_id,))
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "resource_kind": resource_kind,
        "resource_id": str(row[0]),
        "business_id": str(row[1]) if row[1] else None,
        "owner_id": str(row[2]) if row[2] else None,
        "status": row[3],
        "total_amount_cents": row[4],
        "payment_id": str(row[5]) if row[5] else None,
        "payment_method": row[6],
        "payment_status": row[7],
        "external_payment_id": row[8],
    }


def restore_order_stock(cur: PgCursor, order_id: str) -> int:
    """Return ordered quantities to product stock.

    Returns:
        Number of product rows updated.
    """
    cur.execute(
        """
        UPDATE products p
        SET stock = p.stock + oi.qty,
            updated_at = now()
        FROM (
            SELECT product_id, SUM(quantity) AS qty
            FROM order_items
            WHERE order_id = %s
            GROUP BY product_id
        ) oi
        WHERE p.id = oi.product_id
        """,
        (order_id,),
    )
    return cur.rowcount


def cancel_order(
    cur: PgCursor,
    order_id: str,
    *,
    cancelled_by: str,
    reason: str,
) -> bool:
    """Move an order to cancelled_by_user and restore its stock.

    Returns:
        True if the order transitioned, False if it was already cancelled.
    """
    cur.execute(
        """
        UPDATE orders
        SET status = %s,
            cancelled_at = now(),
            cancelled_by = %s,
            cancellation_reason = %s,
            updated_at = now()
        WHERE id = %s AND status <> ALL(%s)
        """,
        (
            ORDER_CANCELLED_BY_USER,
            cancelled_by,
            reason,
            order_id,
            list(ORDER_CANCELLED_STATUSES),
        ),
    )
    if cur.rowcount != 1:
        return False
    restore_order_stock(cur, order_id)
    return True


def mark_resource_refunded(
    cur: PgCursor,
    resource_kind: str,
    resource_id: str,
) -> bool:
    """Apply the ledger side effect of a completed refund.

    Bookings move to 'Canceled' so the room stops counting as occupied;
    orders move to 'cancelled_by_user' and their stock is restored.
    Idempotent: a second call finds the resource already cancelled.

    Returns:
        True if the resource transitioned, False if it already had.

    Raises:
        ValueError: If resource_kind is unknown.
    """
    if resource_kind == RESOURCE_BOOKING:
        cur.execute(
            """
            UPDATE bookings
            SET booking_status = %s, updated_at = now()
            WHERE id = %s AND booking_status <> %s
            """,
            (BOOKING_CANCELLED, resource_id, BOOKING_CANCELLED),
        )
        return cur.rowcount == 1

    if resource_kind == RESOURCE_ORDER:
        return cancel_order(
            cur,
            resource_id,
            cancelled_by="user",
            reason="Refund completed",
        )

    raise ValueError(f"Unknown resource kind: {resource_kind}")
