"""Add-on price composition."""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from evalshop.core.money import ZERO, percent_of, round_ceiling, to_decimal
from evalshop.models.catalog import AddOn
from evalshop.models.purchase import SelectedAddOn


def total_percentage(add_ons: Iterable[Mapping[str, Any]]) -> Decimal:
    """Sum the percentage loadings of selected add-ons."""
    return sum((to_decimal(add_on.get("percentage")) for add_on in add_ons), ZERO)


def apply_add_ons(base_price: Any, add_ons: Iterable[Mapping[str, Any]]) -> Decimal:
    """Load a coupon-adjusted base price with percentage add-ons.

    Percentages add up before they are applied, so 10% and 5% on 200
    give 230, not 231.

    Args:
        base_price: Price after coupon discount.
        add_ons: Selected add-ons, each carrying a ``percentage``.

    Returns:
        Decimal: Final price rounded up to whole units.
    """
    base = to_decimal(base_price)
    return round_ceiling(base + percent_of(base, total_percentage(add_ons)))


def is_applicable(add_on: AddOn, program_id: str) -> bool:
    """Check whether an add-on may be attached to a program."""
    programs = add_on.get("applicable_programs") or []
    return not programs or str(program_id) in {str(p) for p in programs}


def freeze_add_on(add_on: AddOn) -> SelectedAddOn:
    """Copy the fields of an add-on that pricing must not re-read later."""
    return SelectedAddOn(
        add_on_id=str(add_on["id"]),
        percentage=float(to_decimal(add_on.get("price_increase_percentage"))),
        metadata={
            "name": add_on.get("name"),
            "key": add_on.get("key"),
            **(add_on.get("metadata") or {}),
        },
    )
