"""Coupon discount arithmetic, independent of coupon storage."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from evalshop.core.money import HUNDRED, ZERO, percent_of, round_ceiling, to_decimal

DISCOUNT_TYPES = ("percentage", "fixed")


@dataclass(frozen=True)
class DiscountCalculation:
    """Result of applying one discount to one price."""

    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    discount_type: str
    discount_value: Decimal


def calculate_discount(
    original_price: Any,
    discount_type: str,
    discount_value: Any,
    max_discount_amount: Any = None,
) -> DiscountCalculation:
    """Apply a percentage or fixed discount to a price.

    The discount is capped by ``max_discount_amount`` when one is set
    (``None`` or ``0`` mean no cap), then clamped to ``[0, original_price]``.
    Discount and final price are both rounded up to whole currency units.

    Args:
        original_price: Price before discount.
        discount_type: ``"percentage"`` or ``"fixed"``.
        discount_value: Percentage points or fixed currency amount.
        max_discount_amount: Optional cap on the discount amount.

    Returns:
        DiscountCalculation: Discount amount and final price.

    Raises:
        ValueError: If the price is negative or the discount type is unknown.
    """
    price = to_decimal(original_price)
    value = to_decimal(discount_value)
    if price < ZERO:
        raise ValueError("Original price cannot be negative")

    if discount_type == "percentage":
        amount = percent_of(price, value)
    elif discount_type == "fixed":
        amount = value
    else:
        raise ValueError(f"Invalid discount type: {discount_type}")

    cap = to_decimal(max_discount_amount)
    if cap > ZERO and amount > cap:
        amount = cap

    amount = min(max(amount, ZERO), price)

    discount_amount = min(round_ceiling(amount), price)
    final_price = round_ceiling(max(price - discount_amount, ZERO))

    return DiscountCalculation(
        original_price=price,
        discount_amount=discount_amount,
        final_price=final_price,
        discount_type=discount_type,
        discount_value=value,
    )


def calculate_actual_discount_percentage(original_price: Any, final_price: Any) -> Decimal:
    """Return the effective discount percentage, rounded up."""
    price = to_decimal(original_price)
    if price == ZERO:
        return ZERO
    return round_ceiling((price - to_decimal(final_price)) / price * HUNDRED)


def format_discount_label(discount_type: str, discount_value: Any) -> str:
    """Human-readable discount label, e.g. ``20% OFF`` or ``$15.00 OFF``."""
    value = to_decimal(discount_value)
    if discount_type == "percentage":
        return f"{value.normalize():f}% OFF"
    if discount_type == "fixed":
        return f"${value:.2f} OFF"
    return "Discount Applied"
