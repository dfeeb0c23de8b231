"""Thin wrapper around Stripe SDK for refunds.

Purpose:
- Encapsulate Stripe API calls so domain code doesn't import stripe.* directly.
- Accept idempotency_key for safe retries.
- Never log full Stripe payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

import logging
from typing import Any

import stripe

from cityventure.config import get_settings
from cityventure.observability.redaction import id_prefix

logger = logging.getLogger(__name__)

# Stripe refund statuses that are final from our point of view.
FINAL_REFUND_STATUSES = {
    "succeeded": "succeeded",
    "failed": "failed",
    "canceled": "failed",
}


class RefundSubmissionError(Exception):
    """Stripe rejected the refund or could not be reached."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


def map_refund_status(stripe_status: str | None) -> str | None:
    """Map a Stripe refund status to a refund outcome.

    Returns:
        'succeeded' or 'failed' for final statuses, None while Stripe is
        still working on it (pending, requires_action).
    """
    if stripe_status is None:
        return None
    return FINAL_REFUND_STATUSES.get(stripe_status)


class StripeClient:
    """Wrapper for Stripe Refund operations.

    Usage:
        client = StripeClient()  # reads STRIPE_SECRET_KEY from env
        refund = client.create_refund(
            external_payment_id="pi_123",
            amount_cents=500000,
            idempotency_key="refund:6f1c...",
        )
        print(refund["refund_id"], refund["status"])
    """

    def __init__(self, api_key: str | None = None) -> None:
        """Initialize the Stripe client.

        Args:
            api_key: Stripe secret key. Defaults to STRIPE_SECRET_KEY env var.

        Raises:
            RuntimeError: If no API key is provided or found in environment.
        """
        self._api_key = api_key or get_settings().stripe_secret_key
        if not self._api_key:
            raise RuntimeError(
                "Stripe API key not provided. "
                "Set STRIPE_SECRET_KEY or pass api_key parameter."
            )

    def create_refund(
        self,
        *,
        external_payment_id: str,
        amount_cents: int,
        idempotency_key: str,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a Stripe Refund against a payment.

        Args:
            external_payment_id: PaymentIntent ('pi_...') or Charge ('ch_...') ID.
            amount_cents: Amount to refund in cents.
            idempotency_key: Idempotency key for safe retries.
            reason: Stripe refund reason (duplicate, fraudulent,
                requested_by_customer) or None.
            metadata: Optional metadata to attach to the refund.
            correlation_id: Optional correlation ID for logging.

        Returns:
            Dict with refund_id, status, amount_cents.

        Raises:
            RefundSubmissionError: On any API or network failure.
        """
        client = stripe.StripeClient(self._api_key)

        target = "charge" if external_payment_id.startswith("ch_") else "payment_intent"
        params: dict[str, Any] = {
            target: external_payment_id,
            "amount": amount_cents,
        }
        if reason:
            params["reason"] = reason
        if metadata:
            params["metadata"] = metadata

        try:
            refund = client.v1.refunds.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            logger.warning(
                "stripe_refund_create_failed",
                extra={
                    "payment_id": id_prefix(external_payment_id),
                    "error_code": e.code,
                    "correlation_id": correlation_id,
                },
            )
            raise RefundSubmissionError(
                e.user_message or str(e) or type(e).__name__,
                code=e.code,
            ) from e

        # Log only IDs, never full payload
        logger.info(
            "stripe_refund_created",
            extra={
                "refund_id": id_prefix(refund.id),
                "status": refund.status,
                "correlation_id": correlation_id,
            },
        )

        return {
            "refund_id": refund.id,
            "status": refund.status,
            "amount_cents": refund.amount,
        }

    def retrieve_refund(
        self,
        refund_id: str,
        *,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Retrieve an existing Refund (used when polling for a final status).

        Args:
            refund_id: The Stripe refund ID.
            correlation_id: Optional correlation ID for logging.

        Returns:
            Dict with refund_id, status, failure_reason.
        """
        client = stripe.StripeClient(self._api_key)

        refund = client.v1.refunds.retrieve(refund_id)

        logger.info(
            "stripe_refund_retrieved",
            extra={
                "refund_id": id_prefix(refund.id),
                "status": refund.status,
                "correlation_id": correlation_id,
            },
        )

        return {
            "refund_id": refund.id,
            "status": refund.status,
            "failure_reason": getattr(refund, "failure_reason", None),
        }
