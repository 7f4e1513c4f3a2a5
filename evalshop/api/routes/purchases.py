"""Purchase routes: creation and pre-payment edits."""

import logging

from fastapi import APIRouter, status

from evalshop.api.deps import Purchases
from evalshop.schemas.checkout import PurchaseCreate, PurchaseResponse, PurchaseUpdate
from evalshop.services.exceptions import PurchaseNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/purchases", tags=["purchases"])


@router.post(
    "",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a purchase",
    description="Prices the order on the server and stores it as pending.",
)
async def create_purchase(data: PurchaseCreate, purchases: Purchases) -> PurchaseResponse:
    """Create a pending purchase.

    Args:
        data: Purchase request.
        purchases: Purchase service.

    Returns:
        PurchaseResponse: The stored purchase.
    """
    purchase = await purchases.create_purchase(data)
    return PurchaseResponse.model_validate(purchase)


@router.get(
    "/{order_number}",
    response_model=PurchaseResponse,
    summary="Get a purchase",
)
async def get_purchase(order_number: str, purchases: Purchases) -> PurchaseResponse:
    """Get a purchase by order number.

    Raises:
        PurchaseNotFoundError: If no purchase has this order number.
    """
    purchase = await purchases.get_by_order_number(order_number)
    if not purchase:
        raise PurchaseNotFoundError(f"Purchase {order_number} not found")
    return PurchaseResponse.model_validate(purchase)


@router.patch(
    "/{order_number}",
    response_model=PurchaseResponse,
    summary="Edit a pending purchase",
    description="Changes add-ons or the coupon and re-prices the order. Fails with 409 once payment has settled.",
)
async def update_purchase(order_number: str, data: PurchaseUpdate, purchases: Purchases) -> PurchaseResponse:
    """Re-price a pending purchase."""
    purchase = await purchases.update_purchase(order_number, data)
    return PurchaseResponse.model_validate(purchase)
