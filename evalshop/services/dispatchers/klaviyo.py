"""Klaviyo purchase events."""

import logging
from typing import Any

from evalshop.core.http_client import send_json
from evalshop.services.dispatchers.base import DispatchContext, SideEffectDispatcher, utc_now

logger = logging.getLogger(__name__)

METRIC_NAMES = {
    "completed": "Placed Order",
    "failed": "Order Failed",
}


def build_event(ctx: DispatchContext) -> dict[str, Any]:
    """Build a Klaviyo events API document for a settled purchase."""
    purchase = ctx.purchase
    total = purchase.get("total_price") or 0
    properties: dict[str, Any] = {
        "$value": total,
        "OrderId": ctx.order_number,
        "Currency": ctx.currency,
        "PurchaseType": purchase.get("purchase_type"),
        "PaymentMethod": purchase.get("payment_method") or ctx.gateway,
        "DiscountCode": purchase.get("discount_code"),
        "Items": [
            {
                "ProductName": ctx.program_name,
                "AccountSize": purchase.get("account_size"),
                "ProductID": ctx.line.product_id if ctx.line else None,
                "ItemPrice": total,
                "Quantity": 1,
            }
        ],
    }
    return {
        "data": {
            "type": "event",
            "attributes": {
                "metric": {"data": {"type": "metric", "attributes": {"name": METRIC_NAMES[ctx.status]}}},
                "properties": properties,
                "time": utc_now(),
                "unique_id": f"{ctx.order_number}-{ctx.status}",
                "profile": {
                    "data": {
                        "type": "profile",
                        "attributes": {"email": (purchase.get("customer_email") or "").strip().lower()},
                    }
                },
            },
        }
    }


class KlaviyoDispatcher(SideEffectDispatcher):
    """Track placed and failed orders in Klaviyo."""

    name = "klaviyo"
    events = frozenset(METRIC_NAMES)

    def enabled(self) -> bool:
        return bool(self.settings.klaviyo_api_key)

    def applies(self, ctx: DispatchContext) -> bool:
        return super().applies(ctx) and bool(ctx.purchase.get("customer_email"))

    async def send(self, ctx: DispatchContext) -> dict[str, Any]:
        await send_json(
            self.http,
            "POST",
            f"{self.settings.klaviyo_api_url.rstrip('/')}/events/",
            payload=build_event(ctx),
            headers={
                "Authorization": f"Klaviyo-API-Key {self.settings.klaviyo_api_key}",
                "revision": self.settings.klaviyo_revision,
            },
            target="klaviyo",
        )
        logger.info("Tracked Klaviyo '%s' for order %s", METRIC_NAMES[ctx.status], ctx.order_number)
        return {"metric": METRIC_NAMES[ctx.status]}
