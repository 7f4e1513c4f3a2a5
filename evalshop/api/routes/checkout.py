"""Checkout pricing routes."""

from fastapi import APIRouter

from evalshop.api.deps import Pricing
from evalshop.schemas.checkout import QuoteRequest, QuoteResponse, SelectedAddOnSchema
from evalshop.services.pricing_service import CheckoutQuote

router = APIRouter(prefix="/checkout", tags=["checkout"])


def quote_to_response(quote: CheckoutQuote) -> QuoteResponse:
    """Convert a computed quote into its API representation."""
    return QuoteResponse(
        program_id=str(quote.program["id"]),
        tier_id=str(quote.tier["id"]) if quote.tier.get("id") else None,
        purchase_type=quote.purchase_type,
        tier_price=float(quote.tier_price),
        applied_discount=float(quote.applied_discount),
        purchase_price=float(quote.purchase_price),
        add_on_value=float(quote.add_on_value),
        total_price=float(quote.total_price),
        coupon_code=quote.coupon_code,
        selected_add_ons=[SelectedAddOnSchema.model_validate(a) for a in quote.selected_add_ons],
    )


@router.post(
    "/quote",
    response_model=QuoteResponse,
    summary="Price a checkout",
    description="Computes tier price, coupon discount and add-on loading. Anonymous callers are allowed.",
)
async def create_quote(data: QuoteRequest, pricing: Pricing) -> QuoteResponse:
    """Price a checkout without creating anything.

    Args:
        data: Program, tier, add-ons and optional coupon.
        pricing: Pricing service.

    Returns:
        QuoteResponse: Computed prices.
    """
    quote = await pricing.quote(
        program_id=data.program_id,
        account_size=data.account_size,
        tier_id=data.tier_id,
        purchase_type=data.purchase_type,
        reset_product_type=data.reset_product_type,
        add_on_ids=data.add_on_ids,
        coupon_code=data.coupon_code,
        user_id=data.user_id,
        user_email=str(data.user_email).lower() if data.user_email else None,
    )
    return quote_to_response(quote)
