"""Fixed-point money helpers.

Every price in the system goes through ``Decimal`` and a single rounding
policy: round toward ceiling to whole currency units.
"""

from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")
WHOLE_UNIT = Decimal("1")


def to_decimal(value: Any) -> Decimal:
    """Convert a stored or user-supplied amount to Decimal.

    Floats are converted through ``str`` so ``0.1`` stays ``0.1``.
    ``None`` and empty strings become zero.

    Raises:
        ValueError: If the value is not numeric.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e


def round_ceiling(value: Decimal) -> Decimal:
    """Round to whole currency units toward positive infinity."""
    return value.quantize(WHOLE_UNIT, rounding=ROUND_CEILING)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """Return ``amount * percentage / 100`` without rounding."""
    return amount * percentage / HUNDRED


def to_storage(value: Decimal) -> int | float:
    """Convert a Decimal into a JSON-friendly number for the store."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)
