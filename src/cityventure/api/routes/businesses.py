"""Business-facing refund reporting."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query

from cityventure.api.rbac import BusinessRoleContext, require_business_role
from cityventure.api.serializers import serialize_refund_stats
from cityventure.infra.db import txn
from cityventure.infra.repositories.refunds_repository import refund_stats_for_business

router = APIRouter(prefix="/businesses", tags=["businesses"])

_MAX_RANGE_DAYS = 366


@router.get("/refund-stats")
def get_refund_stats(
    start_date: date = Query(...),
    end_date: date = Query(...),
    ctx: BusinessRoleContext = Depends(require_business_role("manager")),
) -> dict:
    """Refund counts and refunded totals per resource kind (orders, bookings).

    Both dates are inclusive. Requires manager role or higher.
    """
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date before start_date")
    if (end_date - start_date).days > _MAX_RANGE_DAYS:
        raise HTTPException(status_code=400, detail="date range too large")

    with txn() as cur:
        rows = refund_stats_for_business(cur, ctx.business_id, start_date, end_date)

    return {
        "business_id": ctx.business_id,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "stats": [serialize_refund_stats(row) for row in rows],
    }
