"""Time and money helpers for consistent timestamps and amounts."""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CENT = Decimal("0.01")


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def cents_to_decimal(amount_cents: int) -> Decimal:
    """Render integer cents as a 2-place decimal (5000 -> Decimal('50.00'))."""
    return (Decimal(amount_cents) / 100).quantize(_CENT)


def decimal_to_cents(amount: Decimal | str | float) -> int:
    """Convert a decimal amount to integer cents.

    Raises:
        ValueError: If the amount is not a finite number or has more than
            2 fractional digits.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}") from None
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount}")
    quantized = value.quantize(_CENT, rounding=ROUND_HALF_UP)
    if quantized != value:
        raise ValueError(f"Amount must have at most 2 decimal places: {amount}")
    return int(quantized * 100)
