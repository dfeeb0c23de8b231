"""Stripe webhook routes - public endpoint for refund events.

Security rules:
- Validate Stripe-Signature on every request.
- Never log payload or signature header.
- Return 5xx if enqueue fails (so Stripe retries).
- No refund transitions here - just receipt + enqueue of apply-result.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Header, Request, Response

from cityventure.config import get_settings
from cityventure.infra.db import txn
from cityventure.infra.repositories import refunds_repository as refunds_repo
from cityventure.observability.correlation import get_correlation_id
from cityventure.observability.logging import get_logger
from cityventure.observability.redaction import id_prefix, safe_log_context
from cityventure.stripe.client import map_refund_status
from cityventure.stripe.webhook import (
    InvalidPayloadError,
    InvalidSignatureError,
    StripeWebhookEvent,
    verify_and_extract,
)
from cityventure.tasks.client import APPLY_REFUND_RESULT_PATH, TasksClient, apply_result_task_id

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)

SOURCE_STRIPE = "stripe"

# Tasks client singleton
_tasks_client = TasksClient()


def _get_tasks_client() -> TasksClient:
    """Get tasks client instance (allows test injection)."""
    return _tasks_client


def _get_webhook_secret() -> str:
    secret = get_settings().stripe_webhook_secret
    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET not configured")
    return secret


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _resolve_refund_id(cur, event: StripeWebhookEvent) -> str | None:
    """Find our refund for a Stripe refund event.

    metadata.refund_id is set on create, so it resolves even before the
    gateway id was stored; the gateway id is the fallback.
    """
    if event.local_refund_id and _is_uuid(event.local_refund_id):
        refund = refunds_repo.get_refund(cur, event.local_refund_id)
        if refund is not None:
            return refund["id"]
    if event.object_id:
        refund = refunds_repo.get_refund_by_external_refund_id(cur, event.object_id)
        if refund is not None:
            return refund["id"]
    return None


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
) -> Response:
    """Receive Stripe refund events.

    ACK 2xx only if:
    1. Signature validated
    2. Receipt inserted in processed_events
    3. apply-result task enqueued successfully

    Non-refund events and non-final refund statuses are acknowledged
    without a receipt.

    Returns:
        200 OK if enqueued, duplicate, ignored or not final.
        400 Bad Request if signature invalid or the refund is unknown.
        500 Internal Server Error if enqueue fails.
    """
    correlation_id = get_correlation_id()

    try:
        payload_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid body")

    try:
        webhook_secret = _get_webhook_secret()
    except RuntimeError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="server configuration error")

    try:
        event = verify_and_extract(payload_bytes, stripe_signature, webhook_secret)
    except InvalidSignatureError:
        logger.warning(
            "stripe signature validation failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid signature")
    except InvalidPayloadError:
        logger.warning(
            "stripe payload invalid",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload")

    logger.info(
        "stripe webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_id_prefix=id_prefix(event.event_id),
                event_type=event.event_type,
            )
        },
    )

    if not event.is_refund_event:
        return Response(status_code=200, content="ignored")

    outcome = map_refund_status(event.object_status)
    if outcome is None:
        # pending / requires_action: a later event carries the final status
        return Response(status_code=200, content="not final")

    task_id = apply_result_task_id(event.event_id)
    tasks_client = _get_tasks_client()

    try:
        with txn() as cur:
            refund_id = _resolve_refund_id(cur, event)
            if refund_id is None:
                logger.warning(
                    "cannot resolve refund for stripe event",
                    extra={
                        "extra_fields": safe_log_context(
                            correlationId=correlation_id,
                            event_type=event.event_type,
                            object_id_prefix=id_prefix(event.object_id),
                        )
                    },
                )
                return Response(status_code=400, content="unknown refund")

            cur.execute(
                """
                INSERT INTO processed_events (source, external_id)
                VALUES (%s, %s)
                ON CONFLICT (source, external_id) DO NOTHING
                """,
                (SOURCE_STRIPE, event.event_id),
            )

            if cur.rowcount == 0:
                logger.info(
                    "duplicate stripe event ignored",
                    extra={
                        "extra_fields": safe_log_context(
                            correlationId=correlation_id,
                            event_id_prefix=id_prefix(event.event_id),
                        )
                    },
                )
                return Response(status_code=200, content="duplicate")

            # Enqueue inside the transaction: a failed enqueue rolls back the receipt.
            enqueued = tasks_client.enqueue_http(
                task_id=task_id,
                url_path=APPLY_REFUND_RESULT_PATH,
                payload={
                    "event_id": event.event_id,
                    "refund_id": refund_id,
                    "outcome": outcome,
                    "external_refund_id": event.object_id,
                    "error_message": event.failure_reason,
                    "correlation_id": correlation_id,
                },
                correlation_id=correlation_id,
            )

            if not enqueued:
                raise RuntimeError(f"enqueue returned false for task_id={task_id}")

    except Exception:
        logger.exception(
            "stripe webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="processing failed")

    return Response(status_code=200, content="ok")
