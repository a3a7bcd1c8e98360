"""
Money -- amount parsing and rounding for claim arithmetic.

Amounts are ``Decimal`` with two decimal places.  ``to_amount`` is the
single entry point that turns caller input into a stored amount; floats
are accepted only through their ``str`` form so binary artefacts never
reach the ledger.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from claims_kernel.exceptions import ValidationError

AMOUNT_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_PLACES, rounding=ROUND_HALF_UP)


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """Parse a non-negative monetary amount.

    Raises:
        ValidationError: value is missing, not numeric, not finite, or negative.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field, value=value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(
            f"{field} must be numeric, got {value!r}", field=field, value=value
        ) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", field=field, value=value)
    if amount < 0:
        raise ValidationError(
            f"{field} must not be negative, got {amount}", field=field, value=value
        )
    return round_amount(amount)


def sum_amounts(amounts) -> Decimal:
    total = ZERO
    for amount in amounts:
        total += amount
    return round_amount(total)
