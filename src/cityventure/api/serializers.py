"""JSON-safe renderings of repository dicts.

Amounts leave the API as 2-place decimal strings next to the integer cents.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from cityventure.infra.time import cents_to_decimal


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _money(amount_cents: int | None) -> str | None:
    if amount_cents is None:
        return None
    return str(cents_to_decimal(amount_cents))


def serialize_refund(refund: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": refund["id"],
        "refund_for": refund["refund_for"],
        "refund_for_id": refund["refund_for_id"],
        "payment_id": refund["payment_id"],
        "requested_by": refund["requested_by"],
        "amount": _money(refund["amount_cents"]),
        "amount_cents": refund["amount_cents"],
        "original_amount": _money(refund["original_amount_cents"]),
        "original_amount_cents": refund["original_amount_cents"],
        "currency": refund["currency"],
        "reason": refund["reason"],
        "notes": refund["notes"],
        "status": refund["status"],
        "external_refund_id": refund["external_refund_id"],
        "error_message": refund["error_message"],
        "retry_count": refund["retry_count"],
        "cancelled_by": refund["cancelled_by"],
        "requested_at": _iso(refund["requested_at"]),
        "processed_at": _iso(refund["processed_at"]),
        "completed_at": _iso(refund["completed_at"]),
    }


def serialize_eligibility(eligibility) -> dict[str, Any]:
    data = eligibility.to_dict()
    data["amount"] = _money(data["amount_cents"])
    return data


def serialize_block(block: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": block["id"],
        "room_id": block["room_id"],
        "business_id": block["business_id"],
        "start_date": _iso(block["start_date"]),
        "end_date": _iso(block["end_date"]),
        "block_reason": block["block_reason"],
        "notes": block["notes"],
        "created_by": block["created_by"],
        "created_at": _iso(block["created_at"]),
    }


def serialize_refund_stats(row: dict[str, Any]) -> dict[str, Any]:
    data = dict(row)
    data["total_refunded"] = _money(row["total_refunded_cents"])
    return data
