"""Tests for cash-on-pickup order cancellation (mocked cursor)."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from cityventure.domain.order_cancellation import (
    NotOrderOwnerError,
    OrderNotCancellableError,
    OrderNotFoundError,
    cancel_cash_on_pickup_order,
)
from helpers import _bind_txn

MODULE = "cityventure.domain.order_cancellation"
ORDER_ID = "order-0001"
USER_ID = "user-0001"


def _order(**overrides) -> dict:
    order = {
        "resource_kind": "order",
        "resource_id": ORDER_ID,
        "business_id": "biz-0001",
        "owner_id": USER_ID,
        "status": "pending",
        "total_amount_cents": 25000,
        "payment_id": "pay-0001",
        "payment_method": "cash_on_pickup",
        "payment_status": "pending",
        "external_payment_id": None,
    }
    order.update(overrides)
    return order


@pytest.fixture
def ledger():
    with patch(f"{MODULE}.txn") as mock_txn, patch(
        f"{MODULE}.get_resource_for_refund_check"
    ) as get_order, patch(f"{MODULE}.cancel_order", return_value=True) as cancel, patch(
        f"{MODULE}.update_payment_status"
    ) as pay:
        cur = _bind_txn(mock_txn)
        yield cur, get_order, cancel, pay


def test_cancels_order_and_fails_payment(ledger):
    cur, get_order, cancel, pay = ledger
    get_order.return_value = _order()

    result = cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID, reason="changed_mind")

    assert result == {
        "status": "cancelled",
        "order_id": ORDER_ID,
        "order_status": "cancelled_by_user",
    }
    get_order.assert_called_once_with(cur, "order", ORDER_ID, lock=True)
    cancel.assert_called_once_with(cur, ORDER_ID, cancelled_by="user", reason="changed_mind")
    pay.assert_called_once_with(
        cur, payment_id="pay-0001", status="failed", note="cancelled: changed_mind"
    )


def test_notes_become_cancellation_reason(ledger):
    cur, get_order, cancel, _ = ledger
    get_order.return_value = _order()

    cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID, notes="Ordered twice")

    assert cancel.call_args.kwargs["reason"] == "Ordered twice"


def test_order_without_payment_row(ledger):
    _, get_order, cancel, pay = ledger
    get_order.return_value = _order(payment_id=None, payment_method="cash")

    cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID)

    cancel.assert_called_once()
    pay.assert_not_called()


def test_repeat_cancel_is_idempotent(ledger):
    _, get_order, cancel, pay = ledger
    get_order.return_value = _order(status="cancelled_by_user")

    result = cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID)

    assert result["status"] == "already_cancelled"
    cancel.assert_not_called()
    pay.assert_not_called()


def test_missing_order(ledger):
    _, get_order, _, _ = ledger
    get_order.return_value = None

    with pytest.raises(OrderNotFoundError):
        cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID)


def test_other_users_order(ledger):
    _, get_order, cancel, _ = ledger
    get_order.return_value = _order(owner_id="someone-else")

    with pytest.raises(NotOrderOwnerError):
        cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID)
    cancel.assert_not_called()


def test_processed_order_needs_customer_service(ledger):
    _, get_order, cancel, _ = ledger
    get_order.return_value = _order(status="preparing")

    with pytest.raises(OrderNotCancellableError) as exc_info:
        cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID)

    assert exc_info.value.should_refund is False
    assert exc_info.value.requires_customer_service is True
    cancel.assert_not_called()


def test_online_payment_must_be_refunded(ledger):
    _, get_order, cancel, _ = ledger
    get_order.return_value = _order(payment_method="gcash", payment_status="paid")

    with pytest.raises(OrderNotCancellableError) as exc_info:
        cancel_cash_on_pickup_order(ORDER_ID, user_id=USER_ID)

    assert exc_info.value.should_refund is True
    cancel.assert_not_called()
