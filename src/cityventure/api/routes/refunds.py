"""Refund endpoints for customers and business staff.

Customers check eligibility, request, list and cancel their own refunds.
Business staff can read refunds against their business and resubmit a
refund whose gateway submission failed.

Gateway submission never happens in the request: the refund row is
committed first, then a submit task is enqueued for the worker.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query
from pydantic import BaseModel, Field

from cityventure.api.auth import CurrentUser, get_current_user
from cityventure.api.errors import http_error
from cityventure.api.rbac import has_business_role
from cityventure.api.serializers import serialize_eligibility, serialize_refund
from cityventure.domain.errors import RefundsError
from cityventure.domain.refund_eligibility import evaluate
from cityventure.domain.refunds import RefundReason, RefundStatus, cancel_refund, request_refund
from cityventure.infra.db import txn
from cityventure.infra.repositories import idempotency_repository as idem_repo
from cityventure.infra.repositories import refunds_repository as refunds_repo
from cityventure.infra.repositories.ledger_repository import get_resource_for_refund_check
from cityventure.infra.time import decimal_to_cents
from cityventure.observability.correlation import get_correlation_id
from cityventure.observability.logging import get_logger
from cityventure.observability.redaction import safe_log_context
from cityventure.tasks.client import SUBMIT_REFUND_PATH, TasksClient, submit_refund_task_id

router = APIRouter(prefix="/refunds", tags=["refunds"])

logger = get_logger(__name__)

_tasks_client = TasksClient()


def _get_tasks_client() -> TasksClient:
    """Get tasks client (allows override in tests)."""
    return _tasks_client


ResourceKindParam = Literal["order", "booking"]


class CreateRefundRequest(BaseModel):
    resource_kind: ResourceKindParam
    resource_id: str = Field(..., min_length=1)
    reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER
    notes: str | None = Field(None, max_length=1000)
    # Decimal string, e.g. "250.00"; omitted means the full amount.
    amount: Decimal | None = None


def _enqueue_submission(
    refund_id: str,
    *,
    correlation_id: str,
    attempt: str | None = None,
) -> bool:
    """Enqueue the gateway submission; False leaves the refund for a manual retry."""
    try:
        return _get_tasks_client().enqueue_http(
            task_id=submit_refund_task_id(refund_id, attempt),
            url_path=SUBMIT_REFUND_PATH,
            payload={"refund_id": refund_id, "correlation_id": correlation_id},
            correlation_id=correlation_id,
        )
    except Exception:
        logger.exception(
            "refund submission enqueue failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    refund_id=refund_id,
                )
            },
        )
        return False


def _can_view(cur, user: CurrentUser, refund_for: str, refund_for_id: str) -> bool:
    """Owner of the order/booking, or viewer+ on its business."""
    resource = get_resource_for_refund_check(cur, refund_for, refund_for_id)
    if resource is None:
        return False
    if resource["owner_id"] == user.id:
        return True
    return has_business_role(user.id, resource["business_id"], "viewer")


@router.get("/eligibility")
def check_eligibility(
    resource_kind: ResourceKindParam = Query(...),
    resource_id: str = Query(..., min_length=1),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Whether the current user may request a refund for an order or booking."""
    with txn() as cur:
        eligibility = evaluate(cur, resource_kind, resource_id, user.id)
    return serialize_eligibility(eligibility)


@router.post("", status_code=201)
def create_refund(
    body: CreateRefundRequest,
    user: CurrentUser = Depends(get_current_user),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> dict:
    """Request a refund and enqueue its gateway submission.

    With an Idempotency-Key header, a replay returns the first response.
    """
    correlation_id = get_correlation_id()
    endpoint = f"refund-request:{user.id}"

    if idempotency_key:
        with txn() as cur:
            stored = idem_repo.get_stored_response(
                cur, idempotency_key=idempotency_key, endpoint=endpoint
            )
        if stored is not None:
            logger.info(
                "idempotent replay for refund request",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        idempotency_key=idempotency_key,
                    )
                },
            )
            return stored[1]

    amount_cents = None
    if body.amount is not None:
        try:
            amount_cents = decimal_to_cents(body.amount)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    try:
        refund = request_refund(
            resource_kind=body.resource_kind,
            resource_id=body.resource_id,
            requester_id=user.id,
            reason=body.reason.value,
            notes=body.notes,
            amount_cents=amount_cents,
        )
    except RefundsError as exc:
        raise http_error(exc) from exc

    enqueued = _enqueue_submission(refund["id"], correlation_id=correlation_id)

    response_body = {
        "refund": serialize_refund(refund),
        "submission_enqueued": enqueued,
    }

    if idempotency_key:
        with txn() as cur:
            idem_repo.store_response(
                cur,
                idempotency_key=idempotency_key,
                endpoint=endpoint,
                response_code=201,
                response_body=response_body,
            )

    return response_body


@router.get("/mine")
def list_my_refunds(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
) -> list[dict]:
    with txn() as cur:
        refunds = refunds_repo.list_refunds_for_user(cur, user.id, limit=limit, offset=offset)
    return [serialize_refund(r) for r in refunds]


@router.get("/by-resource")
def list_refunds_for_resource(
    resource_kind: ResourceKindParam = Query(...),
    resource_id: str = Query(..., min_length=1),
    user: CurrentUser = Depends(get_current_user),
) -> list[dict]:
    with txn() as cur:
        if not _can_view(cur, user, resource_kind, resource_id):
            raise HTTPException(status_code=404, detail="Resource not found")
        refunds = refunds_repo.list_refunds_for_resource(cur, resource_kind, resource_id)
    return [serialize_refund(r) for r in refunds]


@router.get("/{refund_id}")
def get_refund(
    refund_id: str = Path(..., description="Refund UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    with txn() as cur:
        refund = refunds_repo.get_refund(cur, refund_id)
        if refund is None:
            raise HTTPException(status_code=404, detail="Refund not found")
        if refund["requested_by"] != user.id and not _can_view(
            cur, user, refund["refund_for"], refund["refund_for_id"]
        ):
            raise HTTPException(status_code=404, detail="Refund not found")
    return serialize_refund(refund)


@router.post("/{refund_id}/actions/cancel")
def cancel_refund_action(
    refund_id: str = Path(..., description="Refund UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Cancel one of the user's own refunds while it is still pending."""
    try:
        return cancel_refund(refund_id, by_user_id=user.id)
    except RefundsError as exc:
        raise http_error(exc) from exc


@router.post("/{refund_id}/actions/retry", status_code=202)
def retry_refund_action(
    refund_id: str = Path(..., description="Refund UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Resubmit a failed refund to the gateway. Requires staff role or higher."""
    correlation_id = get_correlation_id()

    with txn() as cur:
        refund = refunds_repo.get_refund(cur, refund_id)
        if refund is None:
            raise HTTPException(status_code=404, detail="Refund not found")
        resource = get_resource_for_refund_check(
            cur, refund["refund_for"], refund["refund_for_id"]
        )
        other_active = refunds_repo.has_active_refund(
            cur, refund["refund_for"], refund["refund_for_id"]
        )

    business_id = resource["business_id"] if resource else None
    if not has_business_role(user.id, business_id, "staff"):
        raise HTTPException(status_code=403, detail="Insufficient role")

    if refund["status"] != RefundStatus.FAILED.value:
        raise HTTPException(
            status_code=409,
            detail=f"Only failed refunds can be retried (status '{refund['status']}')",
        )
    # A failed refund is not active itself, so any active one is a newer request.
    if other_active:
        raise HTTPException(
            status_code=409,
            detail="Another refund is already pending for this resource",
        )

    # Counters move with every failure, so each retry gets a distinct task name.
    attempt = f"{refund['retry_count']}-{refund['submission_generation']}"
    enqueued = _enqueue_submission(
        refund_id, correlation_id=correlation_id, attempt=attempt
    )
    if not enqueued:
        raise HTTPException(status_code=503, detail="Could not enqueue retry")

    logger.info(
        "refund retry enqueued",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                refund_id=refund_id,
                retry_count=refund["retry_count"],
            )
        },
    )
    return {"status": "enqueued", "refund_id": refund_id}
