"""Catalog model type definitions: programs, add-ons and product mappings."""

from typing import Any, Literal, TypedDict


ProgramStatus = Literal["active", "inactive"]


class PricingTier(TypedDict, total=False):
    """One account-size tier of a program.

    Stored as part of the programs.pricing_tiers JSONB array.
    """

    id: str
    account_size: str
    price: float
    reset_fee: float | None
    reset_fee_funded: float | None


class Program(TypedDict, total=False):
    """Programs table row representation."""

    id: str
    name: str
    category: str | None
    status: ProgramStatus
    activation_fee: float | None
    pricing_tiers: list[PricingTier]


class AddOn(TypedDict, total=False):
    """Add-ons table row representation.

    ``applicable_programs`` empty means the add-on applies to every program.
    ``metadata`` is display data passed through untouched.
    """

    id: str
    name: str
    key: str
    status: ProgramStatus
    price_increase_percentage: float
    applicable_programs: list[str]
    metadata: dict[str, Any]


class ProgramProductMapping(TypedDict, total=False):
    """Program product mappings table row representation.

    Maps (program, tier, platform) to commerce product/variation identifiers.
    """

    id: str
    program_id: str
    tier_id: str
    platform_slug: str
    product_id: str | None
    variation_id: str | None
    reset_fee_product_id: str | None
    reset_fee_funded_product_id: str | None
    activation_product_id: str | None
