"""Affiliate commission accrual for referred orders."""

import logging
from typing import Any

from evalshop.core.http_client import send_json
from evalshop.services.dispatchers.base import DispatchContext, SideEffectDispatcher

logger = logging.getLogger(__name__)

REFERRAL_CONTEXT = "evalshop"


class AffiliateLedgerDispatcher(SideEffectDispatcher):
    """Record a referral for the affiliate attached at checkout.

    At most one referral is created per (order, affiliate) pair: a purchase
    whose metadata already says the referral was sent for the same affiliate
    is left alone.
    """

    name = "affiliate"
    events = frozenset({"completed"})

    def enabled(self) -> bool:
        return bool(
            self.settings.affiliate_api_url
            and self.settings.affiliate_public_key
            and self.settings.affiliate_token
        )

    def applies(self, ctx: DispatchContext) -> bool:
        if not super().applies(ctx):
            return False
        if (ctx.purchase.get("purchase_type") or "original-order") != "original-order":
            return False
        username = ctx.purchase.get("affiliate_username")
        if not username:
            return False
        previous = ctx.metadata.get(self.name) or {}
        if previous.get("referralSent") and previous.get("affiliateUsername") == username:
            logger.info("Referral for order %s already recorded, skipping", ctx.order_number)
            return False
        return True

    @property
    def _auth(self) -> tuple[str, str]:
        return (self.settings.affiliate_public_key, self.settings.affiliate_token)

    @property
    def _base_url(self) -> str:
        return f"{self.settings.affiliate_api_url.rstrip('/')}/wp-json/affwp/v1"

    async def send(self, ctx: DispatchContext) -> dict[str, Any]:
        username = ctx.purchase["affiliate_username"]
        affiliate = await send_json(
            self.http,
            "GET",
            f"{self._base_url}/affiliates/search",
            params={"username": username},
            auth=self._auth,
            target="affiliate ledger",
        )
        affiliate_id = affiliate.get("affiliate_id")
        if not affiliate_id:
            logger.warning("Affiliate %s not found for order %s", username, ctx.order_number)
            return {"referralSent": False, "referralReason": "affiliate_not_found", "affiliateUsername": username}
        if affiliate.get("status", "active") != "active":
            return {
                "referralSent": False,
                "referralReason": f"affiliate_status_{affiliate['status']}",
                "affiliateId": affiliate_id,
                "affiliateUsername": username,
            }

        referral = await send_json(
            self.http,
            "POST",
            f"{self._base_url}/referrals",
            payload={
                "affiliate_id": affiliate_id,
                "amount": ctx.purchase.get("total_price") or ctx.purchase.get("purchase_price") or 0,
                "description": f"Order #{ctx.order_number} - {ctx.program_name}",
                "reference": ctx.order_number,
                "status": "unpaid",
                "context": REFERRAL_CONTEXT,
            },
            auth=self._auth,
            target="affiliate ledger",
        )
        logger.info("Recorded referral for order %s (affiliate=%s)", ctx.order_number, username)
        return {
            "referralSent": True,
            "referralId": referral.get("referral_id"),
            "affiliateId": affiliate_id,
            "affiliateUsername": username,
        }
