"""Cancel cash-on-pickup orders - no money moved, so no refund is needed.

Orchestrates the cancellation inside a single DB transaction:
lock order → validate owner/status/payment method → cancel + restore stock →
mark payment failed.
"""

from cityventure.domain.errors import AuthorizationError, ConflictError, NotFoundError
from cityventure.domain.refund_eligibility import CASH_PAYMENT_METHODS
from cityventure.infra.db import txn
from cityventure.infra.repositories.ledger_repository import (
    ORDER_CANCELLED_BY_USER,
    ORDER_CANCELLED_STATUSES,
    RESOURCE_ORDER,
    cancel_order,
    get_resource_for_refund_check,
)
from cityventure.infra.repositories.payments_repository import update_payment_status
from cityventure.observability.logging import get_logger
from cityventure.observability.redaction import safe_log_context

logger = get_logger(__name__)


class OrderNotFoundError(NotFoundError):
    """Raised when the order does not exist."""


class NotOrderOwnerError(AuthorizationError):
    """Raised when someone other than the buyer tries to cancel."""


class OrderNotCancellableError(ConflictError):
    """Raised when the order is past 'pending' or was paid online."""

    def __init__(self, message: str, *, should_refund: bool = False) -> None:
        self.should_refund = should_refund
        self.requires_customer_service = not should_refund
        super().__init__(message)


def cancel_cash_on_pickup_order(
    order_id: str,
    *,
    user_id: str,
    reason: str = "changed_mind",
    notes: str | None = None,
) -> dict:
    """Cancel a pending cash-on-pickup order on the buyer's request.

    Args:
        order_id: Order UUID.
        user_id: Requesting user; must own the order.
        reason: Cancellation reason code.
        notes: Optional free text; stored as the cancellation reason if given.

    Returns:
        {"status": "already_cancelled", "order_id": str} if repeated, else
        {"status": "cancelled", "order_id": str, "order_status": "cancelled_by_user"}.

    Raises:
        OrderNotFoundError: If the order doesn't exist.
        NotOrderOwnerError: If user_id is not the buyer.
        OrderNotCancellableError: If the order is not pending, or was paid
            online (should_refund=True; request a refund instead).
    """
    with txn() as cur:
        order = get_resource_for_refund_check(cur, RESOURCE_ORDER, order_id, lock=True)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")

        if order["owner_id"] != user_id:
            raise NotOrderOwnerError("You can only cancel your own orders")

        # Idempotency
        if order["status"] in ORDER_CANCELLED_STATUSES:
            return {"status": "already_cancelled", "order_id": order_id}

        if order["status"] != "pending":
            raise OrderNotCancellableError(
                "Order has already been processed. Please contact customer service."
            )

        if order["payment_method"] not in CASH_PAYMENT_METHODS:
            raise OrderNotCancellableError(
                "This order was paid online. Please request a refund instead.",
                should_refund=True,
            )

        cancel_order(cur, order_id, cancelled_by="user", reason=notes or reason)

        if order["payment_id"] is not None:
            update_payment_status(
                cur,
                payment_id=order["payment_id"],
                status="failed",
                note=f"cancelled: {reason}",
            )

    logger.info(
        "cash on pickup order cancelled",
        extra={
            "extra_fields": safe_log_context(
                order_id=order_id,
                business_id=order["business_id"],
                reason=reason,
            )
        },
    )
    return {
        "status": "cancelled",
        "order_id": order_id,
        "order_status": ORDER_CANCELLED_BY_USER,
    }
