"""Resolution of commerce product/variation identifiers for a purchase."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from evalshop.models.catalog import ProgramProductMapping
from evalshop.models.purchase import Purchase
from evalshop.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineIdentifiers:
    """External product and variation ids for an order line."""

    product_id: str
    variation_id: str | None
    source: str


LineStrategy = Callable[[CatalogService, Purchase], Awaitable[LineIdentifiers | None]]


def _as_id(value: object) -> str | None:
    if value in (None, "", 0, "0"):
        return None
    return str(value)


async def _mapping_for(catalog: CatalogService, purchase: Purchase) -> ProgramProductMapping | None:
    return await catalog.find_product_mapping(
        purchase["program_id"],
        purchase.get("tier_id") or (purchase.get("metadata") or {}).get("tierId"),
        purchase.get("platform_slug") or (purchase.get("metadata") or {}).get("platformSlug"),
    )


async def frozen_metadata(catalog: CatalogService, purchase: Purchase) -> LineIdentifiers | None:
    """Identifiers stored on the purchase when it was created."""
    metadata = purchase.get("metadata") or {}
    product_id = _as_id(metadata.get("productId"))
    if not product_id:
        return None
    return LineIdentifiers(product_id, _as_id(metadata.get("variationId")), "metadata")


async def reset_fee_mapping(catalog: CatalogService, purchase: Purchase) -> LineIdentifiers | None:
    """Reset-fee product from the mapping, funded variant when requested."""
    mapping = await _mapping_for(catalog, purchase)
    if not mapping:
        return None
    reset_type = (purchase.get("metadata") or {}).get("resetProductType")
    funded_id = _as_id(mapping.get("reset_fee_funded_product_id"))
    if reset_type == "funded" and funded_id:
        return LineIdentifiers(funded_id, _as_id(mapping.get("variation_id")), "mapping:reset_fee_funded")
    reset_id = _as_id(mapping.get("reset_fee_product_id"))
    if reset_id:
        return LineIdentifiers(reset_id, _as_id(mapping.get("variation_id")), "mapping:reset_fee")
    return None


async def activation_mapping(catalog: CatalogService, purchase: Purchase) -> LineIdentifiers | None:
    """Activation product from the mapping."""
    mapping = await _mapping_for(catalog, purchase)
    activation_id = _as_id(mapping.get("activation_product_id")) if mapping else None
    if not mapping or not activation_id:
        return None
    return LineIdentifiers(activation_id, _as_id(mapping.get("variation_id")), "mapping:activation")


async def program_mapping(catalog: CatalogService, purchase: Purchase) -> LineIdentifiers | None:
    """Regular program product and variation from the mapping."""
    mapping = await _mapping_for(catalog, purchase)
    product_id = _as_id(mapping.get("product_id")) if mapping else None
    if not mapping or not product_id:
        return None
    return LineIdentifiers(product_id, _as_id(mapping.get("variation_id")), "mapping:program")


# Reset orders trust identifiers frozen at checkout over a fresh lookup.
LINE_STRATEGIES: dict[str, Sequence[LineStrategy]] = {
    "reset-order": (frozen_metadata, reset_fee_mapping),
    "activation-order": (activation_mapping,),
    "original-order": (program_mapping,),
}


async def resolve_line_identifiers(catalog: CatalogService, purchase: Purchase) -> LineIdentifiers | None:
    """Resolve the commerce identifiers for a purchase's order line.

    Args:
        catalog: Catalog lookups.
        purchase: Purchase row.

    Returns:
        LineIdentifiers | None: Identifiers, or None when nothing matches.
    """
    purchase_type = purchase.get("purchase_type") or "original-order"
    for strategy in LINE_STRATEGIES.get(purchase_type, LINE_STRATEGIES["original-order"]):
        identifiers = await strategy(catalog, purchase)
        if identifiers:
            return identifiers

    logger.warning(
        "No product identifiers for order %s (type=%s program=%s tier=%s platform=%s)",
        purchase.get("order_number"),
        purchase_type,
        purchase.get("program_id"),
        purchase.get("tier_id"),
        purchase.get("platform_slug"),
    )
    return None
