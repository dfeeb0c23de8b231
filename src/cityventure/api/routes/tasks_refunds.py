"""Worker routes for refund task handling.

Status code contract with the queue: 2xx means done (including skips that
would never succeed on retry), 5xx means try again later.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from cityventure.api.task_auth import verify_task_auth
from cityventure.domain.errors import GatewayError, NotFoundError, ValidationError
from cityventure.domain.refunds import (
    RefundStateError,
    RefundStatus,
    apply_gateway_result,
    submit_to_gateway,
)
from cityventure.observability.correlation import correlation_scope, get_correlation_id
from cityventure.observability.logging import get_logger
from cityventure.observability.redaction import safe_log_context
from cityventure.stripe.client import StripeClient

router = APIRouter(prefix="/tasks/refunds", tags=["tasks"])

logger = get_logger(__name__)


def _get_gateway() -> StripeClient:
    """Gateway used by the submit task (allows override in tests)."""
    return StripeClient()


async def _read_payload(request: Request) -> dict[str, Any] | None:
    try:
        payload = await request.json()
    except Exception:
        return None
    return payload if isinstance(payload, dict) else None


def _require_task_auth(request: Request) -> None:
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/submit")
async def handle_submit(request: Request) -> JSONResponse:
    """Submit a refund to Stripe.

    Expected payload:
    - refund_id: Refund UUID (required)
    - correlation_id: Optional correlation ID of the originating request

    Returns:
        200 with the submission status, or "skipped" when the refund is
        unknown or no longer submittable.
        500 when Stripe rejected or could not be reached (queue retries).
    """
    _require_task_auth(request)

    payload = await _read_payload(request)
    if payload is None:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid json"})

    refund_id = payload.get("refund_id", "")
    if not refund_id:
        return JSONResponse(
            status_code=400, content={"ok": False, "error": "missing refund_id"}
        )

    with correlation_scope(payload.get("correlation_id")) as correlation_id:
        try:
            result = submit_to_gateway(
                refund_id,
                gateway=_get_gateway(),
                correlation_id=correlation_id,
            )
        except GatewayError as exc:
            logger.warning(
                "refund submission will be retried",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        refund_id=refund_id,
                        retry_count=exc.retry_count,
                    )
                },
            )
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "gateway_error", "retry_count": exc.retry_count},
            )
        except (RefundStateError, NotFoundError) as exc:
            logger.info(
                "refund submission skipped",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        refund_id=refund_id,
                        reason=type(exc).__name__,
                    )
                },
            )
            return JSONResponse(
                status_code=200,
                content={"ok": True, "status": "skipped", "refund_id": refund_id},
            )

    return JSONResponse(status_code=200, content={"ok": True, **result})


@router.post("/apply-result")
async def handle_apply_result(request: Request) -> JSONResponse:
    """Apply a final Stripe refund outcome.

    Expected payload:
    - refund_id: Refund UUID (required)
    - outcome: "succeeded" or "failed" (required)
    - event_id: Stripe event ID
    - external_refund_id: Stripe refund ID the event is about
    - error_message: Stripe failure reason for failed refunds
    - correlation_id: Optional correlation ID

    Returns:
        200 for applied, noop, stale and anomaly results.
        500 while the refund is still pending (submission not recorded yet).
    """
    _require_task_auth(request)

    payload = await _read_payload(request)
    if payload is None:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid json"})

    refund_id = payload.get("refund_id", "")
    outcome = payload.get("outcome", "")
    if not refund_id or not outcome:
        return JSONResponse(
            status_code=400, content={"ok": False, "error": "missing required fields"}
        )

    with correlation_scope(payload.get("correlation_id")) as correlation_id:
        try:
            result = apply_gateway_result(
                refund_id,
                outcome,
                external_refund_id=payload.get("external_refund_id"),
                error_message=payload.get("error_message"),
                gateway_response={
                    "event_id": payload.get("event_id"),
                    "external_refund_id": payload.get("external_refund_id"),
                    "status": outcome,
                },
                correlation_id=correlation_id,
            )
        except RefundStateError as exc:
            if exc.status == RefundStatus.PENDING.value:
                return JSONResponse(
                    status_code=500,
                    content={"ok": False, "error": "refund_not_submitted"},
                )
            raise
        except ValidationError as exc:
            return JSONResponse(status_code=400, content={"ok": False, "error": str(exc)})
        except NotFoundError:
            logger.warning(
                "apply-result for unknown refund",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        refund_id=refund_id,
                    )
                },
            )
            return JSONResponse(
                status_code=200,
                content={"ok": True, "status": "skipped", "refund_id": refund_id},
            )

    return JSONResponse(status_code=200, content={"ok": True, **result})
