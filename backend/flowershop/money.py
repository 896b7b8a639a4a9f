# Overview: Currency helpers; money is stored as integer cents, never floats.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

# Maximum amount: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

_CENT = Decimal("0.01")


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Coerce API input into a Decimal.

    Floats arrive from JSON bodies; they are converted through their
    shortest decimal string so 2.5 becomes Decimal("2.5"), not the binary
    approximation.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            amount = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return amount


def to_cents(value, field: str = "amount") -> int:
    """Decimal amount -> integer cents (half-up). Rejects negatives."""
    amount = to_decimal(value, field)
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    cents = int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(
            f"{field} cannot exceed {format_cents(MAX_AMOUNT_CENTS)}"
        )
    return cents


def from_cents(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(_CENT)


def format_cents(cents: int | None) -> str | None:
    """Serialize cents as a plain decimal string, e.g. 3000 -> "30.00"."""
    amount = from_cents(cents)
    return None if amount is None else f"{amount:.2f}"
