"""Refund eligibility: decides whether an order or booking may be refunded.

Gates, evaluated in order (first failure wins):
1. no pending/processing refund exists for the resource
2. resource exists and the requester owns it
3. resource status is the refundable literal ('pending' for orders,
   'Pending' for bookings; the two are distinct and case-sensitive)
4. payment method is not cash (cash orders are cancel-only)
5. payment status is 'paid'
6. the payment has a gateway payment id

The decision is a pure function over already-loaded rows; evaluate() only
reads. Eligibility is advisory: create_refund_request re-checks the active
refund gate under lock.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from cityventure.infra.repositories.ledger_repository import (
    ORDER_CANCELLED_STATUSES,
    get_resource_for_refund_check,
)
from cityventure.infra.repositories.refunds_repository import has_active_refund


class ResourceKind(str, Enum):
    ORDER = "order"
    BOOKING = "booking"


class Denial(str, Enum):
    ACTIVE_REFUND = "active_refund"
    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"
    ALREADY_PROCESSED = "already_processed"
    CASH_PAYMENT = "cash_payment"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"
    NO_GATEWAY_PAYMENT = "no_gateway_payment"


REFUNDABLE_STATUS = {
    ResourceKind.ORDER: "pending",
    ResourceKind.BOOKING: "Pending",
}

CASH_PAYMENT_METHODS = frozenset({"cash_on_pickup", "cash"})

_ORDER_NOT_ESCALATED = frozenset(ORDER_CANCELLED_STATUSES) | {"failed_payment"}


@dataclass(frozen=True)
class RefundEligibility:
    """Outcome of an eligibility check."""

    eligible: bool
    reason: str
    resource_kind: str
    resource_id: str
    denial: str | None = None
    payment_id: str | None = None
    external_payment_id: str | None = None
    amount_cents: int | None = None
    payment_method: str | None = None
    resource_status: str | None = None
    can_cancel: bool = False
    requires_customer_service: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _deny(
    kind: ResourceKind,
    resource_id: str,
    denial: Denial,
    reason: str,
    resource: dict[str, Any] | None = None,
    **flags: bool,
) -> RefundEligibility:
    resource = resource or {}
    return RefundEligibility(
        eligible=False,
        reason=reason,
        resource_kind=kind.value,
        resource_id=resource_id,
        denial=denial.value,
        payment_method=resource.get("payment_method"),
        resource_status=resource.get("status"),
        **flags,
    )


def decide_eligibility(
    resource_kind: ResourceKind | str,
    resource_id: str,
    resource: dict[str, Any] | None,
    requester_id: str,
    *,
    has_active_refund: bool,
) -> RefundEligibility:
    """Apply the eligibility gates to a loaded resource.

    Args:
        resource_kind: 'order' or 'booking'.
        resource_id: Order or booking UUID.
        resource: Row from get_resource_for_refund_check, or None.
        requester_id: User requesting the refund.
        has_active_refund: Whether a pending/processing refund exists.

    Returns:
        RefundEligibility; when eligible it carries the payment linkage the
        caller needs to create the refund request.
    """
    kind = ResourceKind(resource_kind)
    noun = kind.value

    if has_active_refund:
        return _deny(
            kind,
            resource_id,
            Denial.ACTIVE_REFUND,
            "A refund request is already pending for this resource",
            resource,
        )

    if resource is None or resource.get("owner_id") is None:
        return _deny(kind, resource_id, Denial.NOT_FOUND, f"{noun.capitalize()} not found")

    if resource["owner_id"] != requester_id:
        return _deny(
            kind,
            resource_id,
            Denial.NOT_OWNER,
            f"You are not the owner of this {noun}",
            resource,
        )

    status = resource["status"]
    payment_method = resource.get("payment_method")

    if status != REFUNDABLE_STATUS[kind]:
        if kind is ResourceKind.ORDER:
            escalate = status not in _ORDER_NOT_ESCALATED
        else:
            escalate = True
        return _deny(
            kind,
            resource_id,
            Denial.ALREADY_PROCESSED,
            f"{noun.capitalize()} has already been processed. "
            "Please contact customer service.",
            resource,
            requires_customer_service=escalate,
        )

    if payment_method in CASH_PAYMENT_METHODS:
        return _deny(
            kind,
            resource_id,
            Denial.CASH_PAYMENT,
            "Cash on pickup orders can only be cancelled, not refunded",
            resource,
            can_cancel=kind is ResourceKind.ORDER,
        )

    if resource.get("payment_status") != "paid":
        return _deny(
            kind,
            resource_id,
            Denial.PAYMENT_NOT_COMPLETED,
            f"Payment not completed for this {noun}",
            resource,
        )

    if not resource.get("external_payment_id"):
        return _deny(
            kind,
            resource_id,
            Denial.NO_GATEWAY_PAYMENT,
            f"No gateway payment found for this {noun}",
            resource,
        )

    return RefundEligibility(
        eligible=True,
        reason="Eligible for refund",
        resource_kind=kind.value,
        resource_id=resource_id,
        payment_id=resource["payment_id"],
        external_payment_id=resource["external_payment_id"],
        amount_cents=resource["total_amount_cents"],
        payment_method=payment_method,
        resource_status=status,
    )


def evaluate(
    cur: PgCursor,
    resource_kind: ResourceKind | str,
    resource_id: str,
    requester_id: str,
    *,
    lock: bool = False,
) -> RefundEligibility:
    """Load the resource and decide refund eligibility.

    Args:
        cur: Database cursor.
        resource_kind: 'order' or 'booking'.
        resource_id: Order or booking UUID.
        requester_id: User requesting the refund.
        lock: If True, lock the resource row (used by request_refund so the
            decision and the insert see the same row state).

    Raises:
        ValueError: If resource_kind is unknown.
    """
    kind = ResourceKind(resource_kind)
    resource = get_resource_for_refund_check(cur, kind.value, resource_id, lock=lock)
    active = has_active_refund(cur, kind.value, resource_id)
    return decide_eligibility(
        kind,
        resource_id,
        resource,
        requester_id,
        has_active_refund=active,
    )
