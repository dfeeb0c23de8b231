"""Order actions for customers.

Cash-on-pickup orders are cancelled directly (no money moved); orders paid
online must go through POST /refunds instead.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field

from cityventure.api.auth import CurrentUser, get_current_user
from cityventure.api.errors import http_error
from cityventure.domain.errors import RefundsError
from cityventure.domain.order_cancellation import (
    OrderNotCancellableError,
    cancel_cash_on_pickup_order,
)
from cityventure.observability.correlation import get_correlation_id
from cityventure.observability.logging import get_logger
from cityventure.observability.redaction import safe_log_context

router = APIRouter(prefix="/orders", tags=["orders"])

logger = get_logger(__name__)


class CancelOrderRequest(BaseModel):
    reason: str = Field("changed_mind", min_length=1, max_length=100)
    notes: str | None = Field(None, max_length=1000)


@router.post("/{order_id}/actions/cancel")
def cancel_order_action(
    body: CancelOrderRequest,
    order_id: str = Path(..., description="Order UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Cancel the user's pending cash-on-pickup order."""
    try:
        result = cancel_cash_on_pickup_order(
            order_id,
            user_id=user.id,
            reason=body.reason,
            notes=body.notes,
        )
    except OrderNotCancellableError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "should_refund": exc.should_refund,
                "requires_customer_service": exc.requires_customer_service,
            },
        )
    except RefundsError as exc:
        raise http_error(exc) from exc

    logger.info(
        "order cancel action completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                order_id=order_id,
                status=result["status"],
            )
        },
    )
    return result
