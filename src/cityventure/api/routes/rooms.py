"""Room availability and blocked dates for business dashboards.

Reads need viewer role; creating or removing blocks needs staff.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from cityventure.api.errors import http_error
from cityventure.api.rbac import BusinessRoleContext, require_business_role
from cityventure.api.serializers import serialize_block
from cityventure.domain import availability
from cityventure.domain.errors import RefundsError
from cityventure.infra.db import txn
from cityventure.observability.correlation import get_correlation_id
from cityventure.observability.logging import get_logger
from cityventure.observability.redaction import safe_log_context

router = APIRouter(prefix="/rooms", tags=["rooms"])

logger = get_logger(__name__)


class BlockDatesRequest(BaseModel):
    room_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    block_reason: str = "Maintenance"
    notes: str | None = Field(None, max_length=1000)


class BulkBlockDatesRequest(BaseModel):
    room_ids: list[str] = Field(..., min_length=1, max_length=200)
    start_date: date
    end_date: date
    block_reason: str = "Maintenance"
    notes: str | None = Field(None, max_length=1000)


def _room_in_business(cur, room_id: str, business_id: str) -> bool:
    cur.execute(
        "SELECT 1 FROM rooms WHERE id = %s AND business_id = %s",
        (room_id, business_id),
    )
    return cur.fetchone() is not None


@router.get("/available")
def list_available_rooms(
    start_date: date = Query(...),
    end_date: date = Query(..., description="Departure day (exclusive)"),
    ctx: BusinessRoleContext = Depends(require_business_role("viewer")),
) -> dict:
    try:
        with txn() as cur:
            room_ids = availability.compute_available_rooms(
                cur, ctx.business_id, start_date, end_date
            )
    except RefundsError as exc:
        raise http_error(exc) from exc

    return {
        "business_id": ctx.business_id,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "room_ids": sorted(room_ids),
    }


@router.get("/blocked-dates")
def list_blocked_dates(
    room_id: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    ctx: BusinessRoleContext = Depends(require_business_role("viewer")),
) -> list[dict]:
    try:
        blocks = availability.list_blocked_dates(
            business_id=ctx.business_id,
            room_id=room_id,
            start=start_date,
            end=end_date,
        )
    except RefundsError as exc:
        raise http_error(exc) from exc
    return [serialize_block(b) for b in blocks]


@router.post("/blocked-dates", status_code=201)
def block_dates(
    body: BlockDatesRequest,
    ctx: BusinessRoleContext = Depends(require_business_role("staff")),
) -> dict:
    """Block one room for an inclusive date range.

    409 with the availability status when the room has a booking or an
    overlapping block.
    """
    try:
        block = availability.create_blocked_date(
            room_id=body.room_id,
            business_id=ctx.business_id,
            start_date=body.start_date,
            end_date=body.end_date,
            block_reason=body.block_reason,
            notes=body.notes,
            created_by=ctx.user.id,
        )
    except availability.RoomUnavailableError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "status": exc.status.value,
                "conflicting_id": exc.conflicting_id,
            },
        )
    except RefundsError as exc:
        raise http_error(exc) from exc

    return serialize_block(block)


@router.post("/blocked-dates/bulk")
def bulk_block_dates(
    body: BulkBlockDatesRequest,
    ctx: BusinessRoleContext = Depends(require_business_role("staff")),
) -> dict:
    """Block the same range on many rooms; per-room failures are reported, not raised."""
    try:
        result = availability.bulk_block_dates(
            room_ids=body.room_ids,
            business_id=ctx.business_id,
            start_date=body.start_date,
            end_date=body.end_date,
            block_reason=body.block_reason,
            notes=body.notes,
            created_by=ctx.user.id,
        )
    except RefundsError as exc:
        raise http_error(exc) from exc

    data = result.to_dict()
    data["succeeded"] = [serialize_block(b) for b in result.succeeded]

    logger.info(
        "bulk block dates completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                business_id=ctx.business_id,
                total=result.total,
                failed=result.failed,
            )
        },
    )
    return data


@router.delete("/blocked-dates/{block_id}", status_code=204)
def unblock_dates(
    block_id: str = Path(..., description="Blocked date range UUID"),
    ctx: BusinessRoleContext = Depends(require_business_role("staff")),
) -> None:
    try:
        availability.remove_blocked_date(block_id=block_id, business_id=ctx.business_id)
    except RefundsError as exc:
        raise http_error(exc) from exc


@router.get("/{room_id}/availability")
def get_room_availability(
    room_id: str = Path(..., description="Room UUID"),
    start_date: date = Query(...),
    end_date: date = Query(..., description="Departure day (exclusive)"),
    ctx: BusinessRoleContext = Depends(require_business_role("viewer")),
) -> dict:
    try:
        with txn() as cur:
            if not _room_in_business(cur, room_id, ctx.business_id):
                raise HTTPException(status_code=404, detail="Room not found")
            result = availability.check_room_availability(cur, room_id, start_date, end_date)
    except RefundsError as exc:
        raise http_error(exc) from exc

    data = result.to_dict()
    data["start_date"] = start_date.isoformat()
    data["end_date"] = end_date.isoformat()
    return data
