"""Server-side checkout pricing."""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from evalshop.core.money import ZERO, to_decimal
from evalshop.models.catalog import PricingTier, Program
from evalshop.models.purchase import SelectedAddOn
from evalshop.services.add_on_pricer import apply_add_ons, freeze_add_on, is_applicable
from evalshop.services.catalog_service import CatalogService, find_tier
from evalshop.services.coupon_service import CouponService, CouponValidationResult
from evalshop.services.discount_calculator import DiscountCalculation
from evalshop.services.exceptions import CouponValidationError, PricingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutQuote:
    """Every price figure of a checkout, computed in one pass.

    ``purchase_price`` is the coupon-adjusted base and ``total_price`` the
    amount to charge once add-ons are applied.
    """

    program: Program
    tier: PricingTier
    purchase_type: str
    tier_price: Decimal
    applied_discount: Decimal
    purchase_price: Decimal
    add_on_value: Decimal
    total_price: Decimal
    selected_add_ons: list[SelectedAddOn] = field(default_factory=list)
    coupon: CouponValidationResult | None = None
    calculation: DiscountCalculation | None = None

    @property
    def coupon_code(self) -> str | None:
        """Code of the applied coupon, if any."""
        if self.coupon and self.coupon.coupon:
            return self.coupon.coupon.get("code")
        return None


def list_price(program: Program, tier: PricingTier, purchase_type: str, reset_product_type: str | None) -> Decimal:
    """Pick the list price for a purchase type.

    Raises:
        PricingError: If the program has no price for the purchase type.
    """
    if purchase_type == "reset-order":
        if reset_product_type == "funded" and tier.get("reset_fee_funded"):
            return to_decimal(tier["reset_fee_funded"])
        if tier.get("reset_fee"):
            return to_decimal(tier["reset_fee"])
        raise PricingError(
            f"No reset fee found for program {program.get('id')} and account size {tier.get('account_size')}"
        )
    if purchase_type == "activation-order":
        if program.get("activation_fee"):
            return to_decimal(program["activation_fee"])
        raise PricingError(f"No activation fee found for program {program.get('id')}")
    if tier.get("price"):
        return to_decimal(tier["price"])
    raise PricingError(
        f"No price found for program {program.get('id')} and account size {tier.get('account_size')}"
    )


class PricingService:
    """Service for computing checkout prices from catalog data.

    Client-supplied totals are never trusted; every figure is derived from
    the program tier, the coupon and the add-ons stored in the catalog.
    """

    def __init__(self, catalog: CatalogService, coupons: CouponService) -> None:
        """Initialize pricing service.

        Args:
            catalog: Catalog lookups.
            coupons: Coupon validation.
        """
        self.catalog = catalog
        self.coupons = coupons

    async def quote(
        self,
        program_id: str,
        account_size: str,
        tier_id: str | None = None,
        purchase_type: str = "original-order",
        reset_product_type: str | None = None,
        add_on_ids: list[str] | None = None,
        coupon_code: str | None = None,
        user_id: str | None = None,
        user_email: str | None = None,
        auto_apply: bool = True,
        applied_coupon: CouponValidationResult | None = None,
        order_number: str | None = None,
    ) -> CheckoutQuote:
        """Price a checkout.

        Coupons apply to original orders only. An explicit coupon that fails
        validation raises; without one the best auto-apply coupon is used.

        Args:
            program_id: Program being purchased.
            account_size: Account-size label of the tier.
            tier_id: Optional tier id, preferred over the account size.
            purchase_type: original-order, reset-order or activation-order.
            reset_product_type: ``"funded"`` selects the funded reset fee.
            add_on_ids: Ids of selected add-ons.
            coupon_code: Optional coupon code entered by the customer.
            user_id: Optional customer user id.
            user_email: Optional customer email.
            auto_apply: Look for an auto-apply coupon when no code is given.
            applied_coupon: Coupon already attached to the purchase; its frozen
                terms are applied without validating it again.
            order_number: Purchase being re-priced, if any.

        Returns:
            CheckoutQuote: Computed prices.

        Raises:
            PricingError: If the program, tier, price or an add-on is unavailable.
            CouponValidationError: If the entered coupon cannot be applied.
        """
        program = await self.catalog.get_program(program_id)
        if not program:
            raise PricingError(f"Program {program_id} not found")

        tier = find_tier(program, tier_id, account_size)
        if not tier:
            raise PricingError(
                f"Could not find pricing tier for program {program_id} and account size {account_size}"
            )

        tier_price = list_price(program, tier, purchase_type, reset_product_type)

        coupon_result: CouponValidationResult | None = None
        if purchase_type == "original-order" and applied_coupon and applied_coupon.discount:
            coupon_result = replace(applied_coupon, calculation=applied_coupon.discount.apply(tier_price))
        elif purchase_type == "original-order":
            coupon_result = await self._resolve_coupon(
                program_id=str(program["id"]),
                account_size=account_size,
                coupon_code=coupon_code,
                user_id=user_id,
                user_email=user_email,
                tier_price=tier_price,
                auto_apply=auto_apply,
                order_number=order_number,
            )
        elif coupon_code:
            logger.info("Ignoring coupon %s on %s for program %s", coupon_code, purchase_type, program_id)

        calculation = coupon_result.calculation if coupon_result else None
        purchase_price = calculation.final_price if calculation else tier_price
        applied_discount = calculation.discount_amount if calculation else ZERO

        selected_add_ons = await self._resolve_add_ons(str(program["id"]), add_on_ids or [])
        total_price = apply_add_ons(purchase_price, selected_add_ons)

        return CheckoutQuote(
            program=program,
            tier=tier,
            purchase_type=purchase_type,
            tier_price=tier_price,
            applied_discount=applied_discount,
            purchase_price=purchase_price,
            add_on_value=total_price - purchase_price,
            total_price=total_price,
            selected_add_ons=selected_add_ons,
            coupon=coupon_result,
            calculation=calculation,
        )

    async def _resolve_coupon(
        self,
        program_id: str,
        account_size: str,
        coupon_code: str | None,
        user_id: str | None,
        user_email: str | None,
        tier_price: Decimal,
        auto_apply: bool,
        order_number: str | None = None,
    ) -> CouponValidationResult | None:
        if coupon_code and coupon_code.strip():
            result = await self.coupons.validate(
                coupon_code,
                program_id=program_id,
                account_size=account_size,
                user_id=user_id,
                user_email=user_email,
                order_amount=tier_price,
                order_number=order_number,
            )
            if not result.valid:
                raise CouponValidationError(result.error_code or "invalid", result.error or "Invalid coupon code")
            return result

        if not auto_apply:
            return None

        return await self.coupons.find_auto_apply_coupon(
            program_id=program_id,
            account_size=account_size,
            user_id=user_id,
            user_email=user_email,
            order_amount=tier_price,
            order_number=order_number,
        )

    async def _resolve_add_ons(self, program_id: str, add_on_ids: list[str]) -> list[SelectedAddOn]:
        wanted = list(dict.fromkeys(str(i) for i in add_on_ids))
        if not wanted:
            return []

        rows: dict[str, Any] = {str(row["id"]): row for row in await self.catalog.get_add_ons(wanted)}
        selected: list[SelectedAddOn] = []
        for add_on_id in wanted:
            add_on = rows.get(add_on_id)
            if not add_on or add_on.get("status", "active") != "active":
                raise PricingError(f"Add-on {add_on_id} is not available")
            if not is_applicable(add_on, program_id):
                raise PricingError(f"Add-on {add_on_id} is not available for program {program_id}")
            selected.append(freeze_add_on(add_on))
        return selected
