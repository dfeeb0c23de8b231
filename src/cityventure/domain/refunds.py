"""Refund lifecycle - request, gateway submission, result application, cancel.

State machine (refunds.status):

    pending ──submit ok──▶ processing ──result──▶ succeeded
       │                      │
       │                      └──────result──▶ failed ──retry──▶ pending
       ├──submit error──▶ failed
       └──cancel──▶ cancelled   (only before any submission attempt)

The gateway is never called inside a transaction: submit_to_gateway opens
one txn() to validate and stamp submitted_at, calls Stripe, then opens a
second txn() to record the outcome. A failed refund is not active, so a
resubmission first reclaims it as pending under the resource row lock;
that keeps at most one pending/processing refund per order or booking
while the gateway call is in flight. Gateway results are applied under a
FOR UPDATE lock on the refund row, so duplicate webhook deliveries and the
synchronous create response converge on one application of the ledger
side effects.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

from psycopg2 import errors as pg_errors

from cityventure.config import get_settings
from cityventure.domain.errors import (
    AnomalyError,
    AuthorizationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from cityventure.domain.refund_eligibility import (
    Denial,
    RefundEligibility,
    ResourceKind,
    evaluate,
)
from cityventure.infra.db import txn
from cityventure.infra.repositories import refunds_repository as refunds_repo
from cityventure.infra.repositories.ledger_repository import (
    get_resource_for_refund_check,
    mark_resource_refunded,
)
from cityventure.infra.repositories.payments_repository import update_payment_status
from cityventure.observability.logging import get_logger
from cityventure.observability.redaction import safe_log_context
from cityventure.stripe.client import RefundSubmissionError, map_refund_status

logger = get_logger(__name__)


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RefundOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RefundReason(str, Enum):
    REQUESTED_BY_CUSTOMER = "requested_by_customer"
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    CHANGED_MIND = "changed_mind"
    WRONG_ORDER = "wrong_order"
    PRODUCT_UNAVAILABLE = "product_unavailable"
    BUSINESS_ISSUE = "business_issue"
    OTHERS = "others"


# Stripe only accepts three reasons; the rest are sent without one.
GATEWAY_REASONS: dict[RefundReason, str | None] = {
    RefundReason.REQUESTED_BY_CUSTOMER: "requested_by_customer",
    RefundReason.CHANGED_MIND: "requested_by_customer",
    RefundReason.WRONG_ORDER: "requested_by_customer",
    RefundReason.DUPLICATE: "duplicate",
    RefundReason.FRAUDULENT: "fraudulent",
    RefundReason.PRODUCT_UNAVAILABLE: None,
    RefundReason.BUSINESS_ISSUE: None,
    RefundReason.OTHERS: None,
}

SUBMITTABLE_STATUSES = (RefundStatus.PENDING.value, RefundStatus.FAILED.value)


class RefundGateway(Protocol):
    """What submit_to_gateway needs from a payment gateway client."""

    def create_refund(
        self,
        *,
        external_payment_id: str,
        amount_cents: int,
        idempotency_key: str,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]: ...


class RefundValidationError(ValidationError):
    """Refund request input is malformed."""


class ActiveRefundExistsError(ConflictError):
    """A pending or processing refund already exists for the resource."""


class RefundNotEligibleError(ConflictError):
    """The resource failed an eligibility gate."""

    def __init__(self, eligibility: RefundEligibility) -> None:
        self.eligibility = eligibility
        super().__init__(eligibility.reason)


class ResourceNotFoundError(NotFoundError):
    """Order or booking does not exist."""


class RefundNotFoundError(NotFoundError):
    """Refund does not exist."""


class NotResourceOwnerError(AuthorizationError):
    """Requester does not own the order, booking or refund."""


class RefundStateError(ConflictError):
    """Requested transition is not legal from the refund's current status."""

    def __init__(self, message: str, *, refund_id: str, status: str) -> None:
        self.refund_id = refund_id
        self.status = status
        super().__init__(message)


def idempotency_key_for(refund_id: str, generation: int = 0) -> str:
    """Gateway idempotency key for one submission generation.

    Every attempt within a generation reuses the key, so a lost response is
    never turned into a second gateway refund. The generation only moves
    after the gateway itself reported the refund failed.
    """
    if generation:
        return f"refund:{refund_id}:{generation}"
    return f"refund:{refund_id}"


def _parse_reason(reason: str) -> RefundReason:
    try:
        return RefundReason(reason)
    except ValueError:
        raise RefundValidationError(f"Invalid refund reason: {reason}") from None


def _validate_amounts(amount_cents: int, original_amount_cents: int) -> None:
    for name, value in (
        ("amount", amount_cents),
        ("original amount", original_amount_cents),
    ):
        if isinstance(value, bool) or not isinstance(value, int):
            raise RefundValidationError(f"Refund {name} must be an integer number of cents")
        if value < 0:
            raise RefundValidationError(f"Refund {name} cannot be negative")
    if amount_cents > original_amount_cents:
        raise RefundValidationError("Refund amount cannot exceed the original payment")


def create_refund_request(
    cur,
    *,
    resource_kind: ResourceKind | str,
    resource_id: str,
    payment_id: str,
    requester_id: str,
    amount_cents: int,
    original_amount_cents: int,
    reason: str,
    external_payment_id: str,
    notes: str | None = None,
    currency: str | None = None,
) -> dict[str, Any]:
    """Insert a pending refund for a resource inside the caller's transaction.

    The resource row is locked first so concurrent requests for the same
    order or booking serialize here; the partial unique index is the last
    line if two writers still race.

    Args:
        cur: Database cursor (within transaction).
        resource_kind: 'order' or 'booking'.
        resource_id: Order or booking UUID.
        payment_id: Payment UUID being refunded.
        requester_id: User requesting the refund.
        amount_cents: Amount to refund.
        original_amount_cents: Amount originally paid.
        reason: RefundReason value.
        external_payment_id: Gateway payment id ('pi_...' or 'ch_...').
        notes: Optional requester notes.
        currency: Currency code; defaults to REFUND_CURRENCY.

    Returns:
        The created refund dict (status 'pending').

    Raises:
        RefundValidationError: Bad amounts, reason or missing payment linkage.
        ResourceNotFoundError: The order/booking does not exist.
        ActiveRefundExistsError: A pending/processing refund already exists.
    """
    try:
        kind = ResourceKind(resource_kind)
    except ValueError:
        raise RefundValidationError(f"Invalid resource kind: {resource_kind}") from None
    refund_reason = _parse_reason(reason)
    _validate_amounts(amount_cents, original_amount_cents)
    if not payment_id or not external_payment_id:
        raise RefundValidationError("Refund requires a payment and a gateway payment id")

    resource = get_resource_for_refund_check(cur, kind.value, resource_id, lock=True)
    if resource is None:
        raise ResourceNotFoundError(f"{kind.value.capitalize()} {resource_id} not found")

    if refunds_repo.has_active_refund(cur, kind.value, resource_id):
        raise ActiveRefundExistsError(
            "A refund request is already pending for this resource"
        )

    refund = refunds_repo.insert_refund(
        cur,
        refund_for=kind.value,
        refund_for_id=resource_id,
        payment_id=payment_id,
        requested_by=requester_id,
        amount_cents=amount_cents,
        original_amount_cents=original_amount_cents,
        currency=(currency or get_settings().refund_currency).upper(),
        reason=refund_reason.value,
        notes=notes,
        external_payment_id=external_payment_id,
    )
    if refund is None:
        raise ActiveRefundExistsError(
            "A refund request is already pending for this resource"
        )

    logger.info(
        "refund request created",
        extra={
            "extra_fields": safe_log_context(
                refund_id=refund["id"],
                refund_for=kind.value,
                resource_id=resource_id,
                amount_cents=amount_cents,
                reason=refund_reason.value,
            )
        },
    )
    return refund


_DENIAL_ERRORS: dict[str, type[Exception]] = {
    Denial.ACTIVE_REFUND.value: ActiveRefundExistsError,
    Denial.NOT_FOUND.value: ResourceNotFoundError,
    Denial.NOT_OWNER.value: NotResourceOwnerError,
}


def request_refund(
    *,
    resource_kind: ResourceKind | str,
    resource_id: str,
    requester_id: str,
    reason: str = RefundReason.REQUESTED_BY_CUSTOMER.value,
    notes: str | None = None,
    amount_cents: int | None = None,
) -> dict[str, Any]:
    """Check eligibility and create a refund request in one transaction.

    Args:
        resource_kind: 'order' or 'booking'.
        resource_id: Order or booking UUID.
        requester_id: User requesting the refund.
        reason: RefundReason value.
        notes: Optional requester notes.
        amount_cents: Partial amount; defaults to the full resource total.

    Returns:
        The created refund dict.

    Raises:
        RefundNotEligibleError: The resource failed a status/payment gate.
        ResourceNotFoundError, NotResourceOwnerError, ActiveRefundExistsError:
            For the matching eligibility denials.
        RefundValidationError: Invalid amount or reason.
    """
    try:
        kind = ResourceKind(resource_kind)
    except ValueError:
        raise RefundValidationError(f"Invalid resource kind: {resource_kind}") from None
    _parse_reason(reason)

    with txn() as cur:
        eligibility = evaluate(cur, kind, resource_id, requester_id, lock=True)
        if not eligibility.eligible:
            error_cls = _DENIAL_ERRORS.get(eligibility.denial or "")
            if error_cls is not None:
                raise error_cls(eligibility.reason)
            raise RefundNotEligibleError(eligibility)

        original = eligibility.amount_cents or 0
        amount = original if amount_cents is None else amount_cents
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise RefundValidationError("Invalid refund amount")

        return create_refund_request(
            cur,
            resource_kind=kind,
            resource_id=resource_id,
            payment_id=eligibility.payment_id,
            requester_id=requester_id,
            amount_cents=amount,
            original_amount_cents=original,
            reason=reason,
            external_payment_id=eligibility.external_payment_id,
            notes=notes,
        )


def submit_to_gateway(
    refund_id: str,
    *,
    gateway: RefundGateway,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Send a pending or failed refund to the payment gateway.

    Idempotent per refund: the gateway idempotency key is derived from the
    refund id, and a refund already in 'processing' with a gateway refund id
    is reported as already submitted without calling out again.

    A failed refund is resubmitted only while no other refund for the same
    resource is pending or processing; it is moved back to 'pending' before
    the gateway call so no new request can be created meanwhile.

    Returns:
        {"status": "processing" | "already_submitted" | "anomaly" |
         <final outcome>, "refund_id": str, "external_refund_id": str | None}

    Raises:
        RefundNotFoundError: Unknown refund id.
        RefundStateError: Refund is succeeded or cancelled, or another
            refund for the resource is active.
        GatewayError: Gateway rejected the refund; the failure is recorded.
    """
    with txn() as cur:
        refund = refunds_repo.get_refund(cur, refund_id, lock=True)
        if refund is None:
            raise RefundNotFoundError(f"Refund {refund_id} not found")

        status = refund["status"]
        if status == RefundStatus.PROCESSING.value and refund["external_refund_id"]:
            return {
                "status": "already_submitted",
                "refund_id": refund_id,
                "external_refund_id": refund["external_refund_id"],
            }
        if status not in SUBMITTABLE_STATUSES:
            raise RefundStateError(
                f"Refund {refund_id} cannot be submitted from status '{status}'",
                refund_id=refund_id,
                status=status,
            )
        if status == RefundStatus.FAILED.value:
            # create_refund_request takes the same row lock before inserting.
            get_resource_for_refund_check(
                cur, refund["refund_for"], refund["refund_for_id"], lock=True
            )
            if refunds_repo.has_active_refund(
                cur, refund["refund_for"], refund["refund_for_id"]
            ):
                logger.warning(
                    "refund resubmission blocked by active refund",
                    extra={
                        "extra_fields": safe_log_context(
                            refund_id=refund_id,
                            refund_for=refund["refund_for"],
                            resource_id=refund["refund_for_id"],
                            correlation_id=correlation_id,
                        )
                    },
                )
                raise RefundStateError(
                    f"Another refund is active for {refund['refund_for']} "
                    f"{refund['refund_for_id']}",
                    refund_id=refund_id,
                    status=status,
                )
        refunds_repo.mark_submission_started(cur, refund_id)

    gateway_reason = GATEWAY_REASONS.get(RefundReason(refund["reason"]))

    try:
        response = gateway.create_refund(
            external_payment_id=refund["external_payment_id"],
            amount_cents=refund["amount_cents"],
            idempotency_key=idempotency_key_for(refund_id, refund["submission_generation"]),
            reason=gateway_reason,
            metadata={
                "refund_id": refund_id,
                "refund_for": refund["refund_for"],
                "refund_for_id": refund["refund_for_id"],
            },
            correlation_id=correlation_id,
        )
    except RefundSubmissionError as exc:
        with txn() as cur:
            retry_count = refunds_repo.record_gateway_failure(
                cur, refund_id, error_message=str(exc)
            )
        logger.error(
            "refund gateway submission failed",
            extra={
                "extra_fields": safe_log_context(
                    refund_id=refund_id,
                    retry_count=retry_count,
                    error_code=exc.code,
                    correlation_id=correlation_id,
                )
            },
        )
        raise GatewayError(
            str(exc),
            refund_id=refund_id,
            retry_count=retry_count if retry_count is not None else refund["retry_count"],
        ) from exc

    external_refund_id = response["refund_id"]
    try:
        with txn() as cur:
            moved = refunds_repo.mark_processing(
                cur,
                refund_id,
                external_refund_id=external_refund_id,
                gateway_response=response,
            )
    except pg_errors.UniqueViolation:
        # Another refund for the resource holds the active slot.
        with txn() as cur:
            refunds_repo.record_external_refund(
                cur,
                refund_id,
                external_refund_id=external_refund_id,
                gateway_response=response,
            )
        logger.error(
            "refund gateway anomaly",
            extra={
                "extra_fields": safe_log_context(
                    refund_id=refund_id,
                    external_refund_id=external_refund_id,
                    current_status=refund["status"],
                    reported_outcome=response.get("status"),
                    correlation_id=correlation_id,
                )
            },
        )
        return {
            "status": "anomaly",
            "refund_id": refund_id,
            "external_refund_id": external_refund_id,
        }
    if not moved:
        logger.warning(
            "refund changed status during gateway submission",
            extra={
                "extra_fields": safe_log_context(
                    refund_id=refund_id,
                    external_refund_id=external_refund_id,
                )
            },
        )

    logger.info(
        "refund submitted to gateway",
        extra={
            "extra_fields": safe_log_context(
                refund_id=refund_id,
                external_refund_id=external_refund_id,
                gateway_status=response.get("status"),
                correlation_id=correlation_id,
            )
        },
    )

    # Stripe can settle card refunds synchronously.
    outcome = map_refund_status(response.get("status"))
    if outcome is not None:
        result = apply_gateway_result(
            refund_id,
            outcome,
            external_refund_id=external_refund_id,
            gateway_response=response,
            correlation_id=correlation_id,
        )
        return {
            "status": result["status"],
            "refund_id": refund_id,
            "external_refund_id": external_refund_id,
        }

    return {
        "status": RefundStatus.PROCESSING.value,
        "refund_id": refund_id,
        "external_refund_id": external_refund_id,
    }


def _report_anomaly(anomaly: AnomalyError, correlation_id: str | None) -> None:
    logger.error(
        "refund gateway anomaly",
        extra={
            "extra_fields": safe_log_context(
                refund_id=anomaly.refund_id,
                current_status=anomaly.current_status,
                reported_outcome=anomaly.reported_outcome,
                correlation_id=correlation_id,
            )
        },
    )


def apply_gateway_result(
    refund_id: str,
    outcome: RefundOutcome | str,
    *,
    external_refund_id: str | None = None,
    error_message: str | None = None,
    gateway_response: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Apply a final gateway outcome to a processing refund.

    On success the resource ledger moves in the same transaction: a booking
    becomes 'Canceled' (freeing the room) or an order becomes
    'cancelled_by_user' with stock restored, and the payment becomes
    'refunded'.

    A result naming a gateway refund other than the one currently stored
    belongs to an earlier submission attempt and is ignored.

    Returns:
        {"status": "stale"} for a result of an earlier submission attempt,
        {"status": "noop"} when the refund already holds this outcome,
        {"status": "anomaly"} when the outcome contradicts a terminal state
        (logged, not applied), otherwise {"status": outcome,
        "ledger_updated": bool}. Every result carries "refund_id".

    Raises:
        RefundValidationError: outcome is not succeeded/failed.
        RefundNotFoundError: Unknown refund id.
        RefundStateError: The refund is still pending (result arrived before
            the submission was recorded); the caller should retry later.
    """
    try:
        outcome = RefundOutcome(outcome)
    except ValueError:
        raise RefundValidationError(f"Invalid gateway outcome: {outcome}") from None

    with txn() as cur:
        refund = refunds_repo.get_refund(cur, refund_id, lock=True)
        if refund is None:
            raise RefundNotFoundError(f"Refund {refund_id} not found")

        status = refund["status"]

        # Checked first: the stored gateway id still names the previous
        # attempt until the resubmission is recorded.
        if status == RefundStatus.PENDING.value:
            raise RefundStateError(
                f"Refund {refund_id} has not been submitted yet",
                refund_id=refund_id,
                status=status,
            )

        stored_refund_id = refund["external_refund_id"]
        if external_refund_id and stored_refund_id and external_refund_id != stored_refund_id:
            logger.warning(
                "stale refund gateway result ignored",
                extra={
                    "extra_fields": safe_log_context(
                        refund_id=refund_id,
                        current_status=status,
                        reported_outcome=outcome.value,
                        external_refund_id=external_refund_id,
                        current_external_refund_id=stored_refund_id,
                        correlation_id=correlation_id,
                    )
                },
            )
            return {"status": "stale", "refund_id": refund_id}

        if status == outcome.value:
            return {"status": "noop", "refund_id": refund_id}

        if status != RefundStatus.PROCESSING.value:
            _report_anomaly(
                AnomalyError(
                    refund_id=refund_id,
                    current_status=status,
                    reported_outcome=outcome.value,
                ),
                correlation_id,
            )
            return {"status": "anomaly", "refund_id": refund_id}

        ledger_updated = False
        if outcome is RefundOutcome.SUCCEEDED:
            refunds_repo.mark_succeeded(cur, refund_id, gateway_response=gateway_response)
            ledger_updated = mark_resource_refunded(
                cur, refund["refund_for"], refund["refund_for_id"]
            )
            update_payment_status(
                cur,
                payment_id=refund["payment_id"],
                status="refunded",
                note=f"Refunded by {refund_id}",
            )
        else:
            refunds_repo.mark_failed(
                cur,
                refund_id,
                error_message=error_message or "Refund failed at gateway",
                gateway_response=gateway_response,
            )

    logger.info(
        "refund gateway result applied",
        extra={
            "extra_fields": safe_log_context(
                refund_id=refund_id,
                outcome=outcome.value,
                refund_for=refund["refund_for"],
                ledger_updated=ledger_updated,
                correlation_id=correlation_id,
            )
        },
    )
    return {
        "status": outcome.value,
        "refund_id": refund_id,
        "ledger_updated": ledger_updated,
    }


def cancel_refund(refund_id: str, *, by_user_id: str) -> dict[str, Any]:
    """Cancel a refund request that has not been sent to the gateway.

    Returns:
        {"status": "cancelled", "refund_id": str}, or
        {"status": "already_cancelled", ...} when repeated.

    Raises:
        RefundNotFoundError: Unknown refund id.
        NotResourceOwnerError: by_user_id did not request the refund.
        RefundStateError: Refund is past 'pending' or a submission started.
    """
    with txn() as cur:
        refund = refunds_repo.get_refund(cur, refund_id, lock=True)
        if refund is None:
            raise RefundNotFoundError(f"Refund {refund_id} not found")

        if refund["requested_by"] != by_user_id:
            raise NotResourceOwnerError("You did not request this refund")

        status = refund["status"]
        if status == RefundStatus.CANCELLED.value:
            return {"status": "already_cancelled", "refund_id": refund_id}

        if status != RefundStatus.PENDING.value or refund["submitted_at"] is not None:
            raise RefundStateError(
                f"Refund {refund_id} can no longer be cancelled (status '{status}')",
                refund_id=refund_id,
                status=status,
            )

        refunds_repo.mark_cancelled(cur, refund_id, cancelled_by=by_user_id)

    logger.info(
        "refund request cancelled",
        extra={"extra_fields": safe_log_context(refund_id=refund_id)},
    )
    return {"status": "cancelled", "refund_id": refund_id}
