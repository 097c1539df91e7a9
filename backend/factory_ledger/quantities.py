# Overview: Decimal helpers for physical quantities and minor-unit money.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

# Stock and production quantities are stored with three fractional digits
QTY_PLACES = Decimal("0.001")
ZERO = Decimal("0")


def to_quantity(value, field: str = "quantity") -> Decimal:
    """Coerce int/float/str/Decimal input to a quantized Decimal."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required and must be a number")
    try:
        qty = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not qty.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return quantize_qty(qty)


def quantize_qty(value) -> Decimal:
    if value is None:
        return ZERO.quantize(QTY_PLACES)
    qty = value if isinstance(value, Decimal) else Decimal(str(value))
    qty = qty.quantize(QTY_PLACES, rounding=ROUND_HALF_UP)
    if qty == ZERO:
        # no negative zero in the journal
        return ZERO.quantize(QTY_PLACES)
    return qty


def qty_to_str(value) -> str | None:
    if value is None:
        return None
    return str(quantize_qty(value))


def round_cents(value: Decimal) -> int:
    """Half-up rounding to a whole minor unit."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
