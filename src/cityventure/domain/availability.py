"""Room availability and date blocking.

Centralised logic to decide whether a room is free for a stay and to create
admin blocks (maintenance, renovation, private use) without colliding with
bookings or other blocks.

Stay ranges are half-open [start, end): the check-out day is free for the
next guest. Two ranges overlap iff (a_start < b_end) AND (b_start < a_end).

Blocks are stored inclusive [start_date, end_date], so a block overlaps a
query [start, end) iff (block.start_date < end) AND (block.end_date >= start).

Only active booking statuses occupy a room: Pending, Reserved, Checked-In.
Canceled (which includes refunded bookings) and Checked-Out do not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any

from psycopg2 import errors as pg_errors
from psycopg2.extensions import cursor as PgCursor

from cityventure.domain.errors import ConflictError, NotFoundError, ValidationError
from cityventure.infra.db import for_update, txn
from cityventure.infra.repositories import blocked_dates_repository as blocks_repo
from cityventure.observability.logging import get_logger

logger = get_logger(__name__)

ACTIVE_BOOKING_STATUSES = ("Pending", "Reserved", "Checked-In")


class AvailabilityStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    BLOCKED = "BLOCKED"


_CONFLICT_MESSAGES = {
    AvailabilityStatus.BOOKING_CONFLICT: "Room has a booking for the selected dates",
    AvailabilityStatus.BLOCKED: "Room is already blocked for the selected dates",
}


@dataclass(frozen=True)
class RoomAvailability:
    """Result of an availability check for one room."""

    room_id: str
    status: AvailabilityStatus
    conflicting_id: str | None = None

    @property
    def available(self) -> bool:
        return self.status is AvailabilityStatus.AVAILABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "status": self.status.value,
            "available": self.available,
            "conflicting_id": self.conflicting_id,
        }


class InvalidDateRangeError(ValidationError):
    """Start/end dates are missing or out of order."""


class RoomNotFoundError(NotFoundError):
    """Room does not exist (or belongs to another business)."""


class BlockedDateNotFoundError(NotFoundError):
    """Blocked date range does not exist."""


class RoomUnavailableError(ConflictError):
    """Room cannot be blocked because of a booking or an existing block."""

    def __init__(self, availability: RoomAvailability) -> None:
        self.availability = availability
        self.room_id = availability.room_id
        self.status = availability.status
        self.conflicting_id = availability.conflicting_id
        super().__init__(_CONFLICT_MESSAGES[availability.status])


@dataclass
class BulkBlockResult:
    """Per-room outcome of a best-effort bulk block."""

    total: int = 0
    success: int = 0
    failed: int = 0
    succeeded: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "succeeded": self.succeeded,
            "errors": self.errors,
        }


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open overlap test: [a_start, a_end) vs [b_start, b_end)."""
    return a_start < b_end and b_start < a_end


def validate_stay_range(start: date, end: date) -> None:
    """A stay query must have start < end."""
    if start is None or end is None:
        raise InvalidDateRangeError("Start and end dates are required")
    if end <= start:
        raise InvalidDateRangeError("End date must be after start date")


def validate_block_range(start_date: date, end_date: date) -> None:
    """A block is inclusive, so a single-day block has start == end."""
    if start_date is None or end_date is None:
        raise InvalidDateRangeError("Start and end dates are required")
    if end_date < start_date:
        raise InvalidDateRangeError("End date cannot be before start date")


def _find_booking_conflict(
    cur: PgCursor,
    *,
    room_id: str,
    start: date,
    end: date,
    lock: bool,
) -> str | None:
    suffix = " FOR UPDATE" if lock else ""
    cur.execute(
        f"""
        SELECT id
        FROM bookings
        WHERE room_id = %s
          AND booking_status = ANY(%s)
          AND check_in_date < %s    -- existing check-in < requested end
          AND check_out_date > %s   -- existing check-out > requested start
        ORDER BY check_in_date
        LIMIT 1
        {suffix}
        """,
        (room_id, list(ACTIVE_BOOKING_STATUSES), end, start),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None


def check_room_availability(
    cur: PgCursor,
    room_id: str,
    start: date,
    end: date,
    *,
    lock: bool = False,
) -> RoomAvailability:
    """Check one room for the half-open range [start, end).

    Bookings are checked before blocks, so a room with both reports
    BOOKING_CONFLICT.

    Args:
        cur: Database cursor.
        room_id: Room UUID.
        start: First night (inclusive).
        end: Departure day (exclusive).
        lock: If True, lock conflicting booking rows FOR UPDATE.

    Returns:
        RoomAvailability with the first conflicting booking or block id.
    """
    validate_stay_range(start, end)

    booking_id = _find_booking_conflict(
        cur, room_id=room_id, start=start, end=end, lock=lock
    )
    if booking_id is not None:
        return RoomAvailability(
            room_id=room_id,
            status=AvailabilityStatus.BOOKING_CONFLICT,
            conflicting_id=booking_id,
        )

    block = blocks_repo.find_overlapping_block(cur, room_id=room_id, start=start, end=end)
    if block is not None:
        return RoomAvailability(
            room_id=room_id,
            status=AvailabilityStatus.BLOCKED,
            conflicting_id=block["id"],
        )

    return RoomAvailability(room_id=room_id, status=AvailabilityStatus.AVAILABLE)


def is_available(cur: PgCursor, room_id: str, start: date, end: date) -> bool:
    return check_room_availability(cur, room_id, start, end).available


def compute_available_rooms(
    cur: PgCursor,
    business_id: str,
    start: date,
    end: date,
) -> set[str]:
    """Return ids of the business's rooms free for [start, end).

    One query: rooms minus those with an overlapping active booking or block.
    """
    validate_stay_range(start, end)

    cur.execute(
        """
        SELECT r.id
        FROM rooms r
        WHERE r.business_id = %s
          AND NOT EXISTS (
              SELECT 1 FROM bookings b
              WHERE b.room_id = r.id
                AND b.booking_status = ANY(%s)
                AND b.check_in_date < %s
                AND b.check_out_date > %s
          )
          AND NOT EXISTS (
              SELECT 1 FROM room_blocked_dates d
              WHERE d.room_id = r.id
                AND d.start_date < %s
                AND d.end_date >= %s
          )
        """,
        (business_id, list(ACTIVE_BOOKING_STATUSES), end, start, end, start),
    )
    return {str(row[0]) for row in cur.fetchall()}


def _lock_room(cur: PgCursor, room_id: str, business_id: str) -> None:
    row = for_update(
        cur,
        "SELECT id FROM rooms WHERE id = %s AND business_id = %s",
        (room_id, business_id),
    )
    if row is None:
        raise RoomNotFoundError(f"Room {room_id} not found")


def _block_room(
    cur: PgCursor,
    *,
    room_id: str,
    business_id: str,
    start_date: date,
    end_date: date,
    block_reason: str,
    notes: str | None,
    created_by: str | None,
) -> dict[str, Any]:
    """Lock the room, re-check and insert, all in the caller's transaction."""
    _lock_room(cur, room_id, business_id)

    # Inclusive block [s, e] is the stay range [s, e + 1).
    availability = check_room_availability(
        cur,
        room_id,
        start_date,
        end_date + timedelta(days=1),
    )
    if not availability.available:
        logger.warning(
            "room block rejected",
            extra={
                "extra_fields": {
                    "room_id": room_id,
                    "business_id": business_id,
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "status": availability.status.value,
                    "conflicting_id": availability.conflicting_id,
                },
            },
        )
        raise RoomUnavailableError(availability)

    try:
        return blocks_repo.insert_blocked_date(
            cur,
            room_id=room_id,
            business_id=business_id,
            start_date=start_date,
            end_date=end_date,
            block_reason=block_reason,
            notes=notes,
            created_by=created_by,
        )
    except pg_errors.ExclusionViolation as exc:
        raise RoomUnavailableError(
            RoomAvailability(room_id=room_id, status=AvailabilityStatus.BLOCKED)
        ) from exc


def _validate_reason(block_reason: str) -> None:
    if block_reason not in blocks_repo.BLOCK_REASONS:
        raise ValidationError(
            f"Invalid block reason: {block_reason}. "
            f"Must be one of {', '.join(blocks_repo.BLOCK_REASONS)}"
        )


def create_blocked_date(
    *,
    room_id: str,
    business_id: str,
    start_date: date,
    end_date: date,
    block_reason: str = "Maintenance",
    notes: str | None = None,
    created_by: str | None = None,
) -> dict[str, Any]:
    """Block a room for the inclusive range [start_date, end_date].

    The room row is locked while availability is re-checked and the block
    inserted, so a concurrent block or booking check for the same room
    waits for this transaction.

    Returns:
        The created block dict.

    Raises:
        InvalidDateRangeError: end_date before start_date.
        ValidationError: Unknown block reason.
        RoomNotFoundError: Room missing or not in this business.
        RoomUnavailableError: status BOOKING_CONFLICT or BLOCKED.
    """
    validate_block_range(start_date, end_date)
    _validate_reason(block_reason)

    with txn() as cur:
        block = _block_room(
            cur,
            room_id=room_id,
            business_id=business_id,
            start_date=start_date,
            end_date=end_date,
            block_reason=block_reason,
            notes=notes,
            created_by=created_by,
        )

    logger.info(
        "room dates blocked",
        extra={
            "extra_fields": {
                "block_id": block["id"],
                "room_id": room_id,
                "business_id": business_id,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "block_reason": block_reason,
            },
        },
    )
    return block


def bulk_block_dates(
    *,
    room_ids: list[str],
    business_id: str,
    start_date: date,
    end_date: date,
    block_reason: str = "Maintenance",
    notes: str | None = None,
    created_by: str | None = None,
) -> BulkBlockResult:
    """Block the same range on several rooms, best effort.

    Each room gets its own transaction; a conflict on one room is recorded
    in the result and the rest are still blocked.

    Raises:
        InvalidDateRangeError / ValidationError: Before touching any room.
    """
    validate_block_range(start_date, end_date)
    _validate_reason(block_reason)

    # dict.fromkeys keeps order and drops duplicates
    unique_room_ids = list(dict.fromkeys(room_ids))
    result = BulkBlockResult(total=len(unique_room_ids))

    for room_id in unique_room_ids:
        try:
            with txn() as cur:
                block = _block_room(
                    cur,
                    room_id=room_id,
                    business_id=business_id,
                    start_date=start_date,
                    end_date=end_date,
                    block_reason=block_reason,
                    notes=notes,
                    created_by=created_by,
                )
        except RoomUnavailableError as exc:
            result.failed += 1
            result.errors.append(
                {"room_id": room_id, "status": exc.status.value, "reason": str(exc)}
            )
        except RoomNotFoundError as exc:
            result.failed += 1
            result.errors.append(
                {"room_id": room_id, "status": "NOT_FOUND", "reason": str(exc)}
            )
        else:
            result.success += 1
            result.succeeded.append(block)

    logger.info(
        "bulk room block finished",
        extra={
            "extra_fields": {
                "business_id": business_id,
                "total": result.total,
                "success": result.success,
                "failed": result.failed,
            },
        },
    )
    return result


def remove_blocked_date(*, block_id: str, business_id: str) -> None:
    """Unblock a range.

    Raises:
        BlockedDateNotFoundError: No such block in this business.
    """
    with txn() as cur:
        deleted = blocks_repo.delete_blocked_date(
            cur, block_id=block_id, business_id=business_id
        )
    if not deleted:
        raise BlockedDateNotFoundError(f"Blocked date {block_id} not found")

    logger.info(
        "room dates unblocked",
        extra={"extra_fields": {"block_id": block_id, "business_id": business_id}},
    )


def list_blocked_dates(
    *,
    business_id: str,
    room_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[dict[str, Any]]:
    if start is not None and end is not None:
        validate_stay_range(start, end)
    with txn() as cur:
        return blocks_repo.list_blocked_dates(
            cur, business_id=business_id, room_id=room_id, start=start, end=end
        )
