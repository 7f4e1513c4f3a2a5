"""Mirror settled orders into the WooCommerce-compatible back office."""

import logging
from typing import Any

from evalshop.core.http_client import send_json
from evalshop.services.dispatchers.base import DispatchContext, SideEffectDispatcher, split_name, utc_now

logger = logging.getLogger(__name__)

ADD_ON_META_KEY = "_wc_checkout_add_on_value"


def _as_int(value: str | None) -> int | str | None:
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def build_order_payload(ctx: DispatchContext) -> dict[str, Any]:
    """Build the order document sent to the commerce mirror.

    Args:
        ctx: Dispatch context of a completed purchase.

    Returns:
        dict: WooCommerce order webhook body.
    """
    purchase = ctx.purchase
    customer = purchase.get("customer_data") or ctx.metadata.get("customerData") or {}
    first_name, last_name = split_name(purchase.get("customer_name"))
    total = str(purchase.get("total_price") or 0)

    meta_data = [
        {"key": "_purchase_id", "value": str(purchase.get("id") or "")},
        {"key": "_platform_slug", "value": purchase.get("platform_slug") or ""},
        {"key": "_program_id", "value": str(purchase.get("program_id") or "")},
        {"key": "_tier_id", "value": str(purchase.get("tier_id") or "")},
    ]
    if ctx.metadata.get("accountId"):
        meta_data.append({"key": "account_id", "value": str(ctx.metadata["accountId"])})
    purchase_type = purchase.get("purchase_type")
    if purchase_type and purchase_type != "original-order":
        meta_data.append({"key": "_purchase_type", "value": purchase_type})
    if purchase.get("discount_code"):
        meta_data.append({"key": "_discount_code", "value": purchase["discount_code"]})
    if purchase.get("affiliate_username"):
        meta_data.append({"key": "_affiliate_username", "value": purchase["affiliate_username"]})

    add_on_keys = [
        (add_on.get("metadata") or {}).get("key") or add_on.get("add_on_id")
        for add_on in purchase.get("selected_add_ons") or []
    ]
    fee_lines = [{"meta_data": [{"key": ADD_ON_META_KEY, "value": add_on_keys}]}] if add_on_keys else []

    line_item: dict[str, Any] = {
        "name": f"{purchase.get('account_size')} - {ctx.program_name}",
        "total": total,
    }
    if ctx.line:
        line_item["product_id"] = _as_int(ctx.line.product_id)
        line_item["variation_id"] = _as_int(ctx.line.variation_id)

    return {
        "id": _as_int(ctx.order_number),
        "status": ctx.status,
        "currency": ctx.currency,
        "date_created": utc_now(),
        "total": total,
        "payment_method": purchase.get("payment_method") or ctx.gateway,
        "billing": {
            "first_name": customer.get("first_name") or first_name,
            "last_name": customer.get("last_name") or last_name,
            "company": "",
            "address_1": customer.get("address") or "",
            "address_2": "",
            "city": customer.get("city") or "",
            "state": customer.get("state") or "",
            "postcode": customer.get("postal_code") or "",
            "country": customer.get("country") or "",
            "email": purchase.get("customer_email") or "",
            "phone": customer.get("phone") or "",
        },
        "line_items": [line_item],
        "fee_lines": fee_lines,
        "meta_data": meta_data,
    }


class CommerceMirrorDispatcher(SideEffectDispatcher):
    """Post completed orders to the commerce back office."""

    name = "commerceMirror"
    events = frozenset({"completed"})

    def enabled(self) -> bool:
        return bool(self.settings.commerce_mirror_url)

    async def send(self, ctx: DispatchContext) -> dict[str, Any]:
        if not ctx.line:
            logger.warning("Mirroring order %s without product identifiers", ctx.order_number)

        headers = {"X-API-Key": self.settings.commerce_mirror_api_key} if self.settings.commerce_mirror_api_key else None
        await send_json(
            self.http,
            "POST",
            self.settings.commerce_mirror_url,
            payload=build_order_payload(ctx),
            headers=headers,
            target="commerce mirror",
        )
        logger.info("Mirrored order %s to commerce back office", ctx.order_number)
        return {"lineSource": ctx.line.source if ctx.line else None}
