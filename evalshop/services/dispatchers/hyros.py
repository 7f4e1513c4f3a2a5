"""Hyros purchase attribution."""

import logging
from typing import Any

from evalshop.core.http_client import send_json
from evalshop.services.dispatchers.base import DispatchContext, SideEffectDispatcher, split_name, utc_now

logger = logging.getLogger(__name__)


def build_order(ctx: DispatchContext) -> dict[str, Any]:
    """Build the Hyros order document for a completed purchase."""
    purchase = ctx.purchase
    first_name, last_name = split_name(purchase.get("customer_name"))
    total = purchase.get("total_price") or 0
    order: dict[str, Any] = {
        "email": purchase.get("customer_email"),
        "orderId": ctx.order_number,
        "date": utc_now()[:19],
        "currency": ctx.currency,
        "priceFormat": "DECIMAL",
        "stage": "Customer",
        "items": [
            {
                "name": ctx.program_name,
                "price": total,
                "externalId": str(purchase.get("program_id")),
                "quantity": 1,
                "categoryName": purchase.get("purchase_type") or "original-order",
            }
        ],
    }
    if first_name:
        order["firstName"] = first_name
    if last_name:
        order["lastName"] = last_name
    if purchase.get("discount_code"):
        discount = ctx.metadata.get("appliedDiscount")
        if discount is None:
            discount = (ctx.metadata.get("tierPrice") or 0) - (purchase.get("purchase_price") or 0)
        order["orderDiscount"] = discount
    return order


class HyrosDispatcher(SideEffectDispatcher):
    """Report completed purchases to Hyros."""

    name = "hyros"
    events = frozenset({"completed"})

    def enabled(self) -> bool:
        return bool(self.settings.hyros_api_key)

    async def send(self, ctx: DispatchContext) -> dict[str, Any]:
        response = await send_json(
            self.http,
            "POST",
            f"{self.settings.hyros_api_url.rstrip('/')}/orders",
            payload=build_order(ctx),
            headers={"API-Key": self.settings.hyros_api_key},
            target="hyros",
        )
        logger.info("Tracked Hyros purchase for order %s", ctx.order_number)
        return {"eventId": response.get("request_id") or response.get("id")}
