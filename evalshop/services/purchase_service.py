"""Purchase business logic service."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from postgrest.exceptions import APIError as PostgrestAPIError
from pydantic import ValidationError as PydanticValidationError
from supabase import Client
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_random

from evalshop.core.config import Settings
from evalshop.core.money import to_storage
from evalshop.models.purchase import Purchase, PurchaseCreate as PurchaseRow, PurchaseUpdate as PurchaseChanges
from evalshop.schemas.checkout import PurchaseCreate, PurchaseUpdate
from evalshop.services.catalog_service import CatalogService
from evalshop.services.coupon_service import CouponService, CouponValidationResult
from evalshop.services.exceptions import (
    CouponValidationError,
    PricingError,
    PurchaseNotEditableError,
    PurchaseNotFoundError,
    PurchaseValidationError,
    UnresolvableProgramError,
)
from evalshop.services.order_lines import reset_fee_mapping
from evalshop.services.order_number import OrderNumberGenerator
from evalshop.services.pricing_service import CheckoutQuote, PricingService
from evalshop.services.program_resolver import ProgramLookup, ProgramResolver

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

# Inserts re-drawn after losing a generated order number to a concurrent checkout
INSERT_ATTEMPTS = 3


def is_order_number_clash(error: BaseException) -> bool:
    """Whether an insert failed on the unique order number."""
    if not isinstance(error, PostgrestAPIError) or error.code != UNIQUE_VIOLATION:
        return False
    return "order_number" in f"{error.message} {error.details}"


@dataclass
class BatchResult:
    """Outcome of creating many purchases in one call."""

    created: list[str] = field(default_factory=list)
    skipped: Counter = field(default_factory=Counter)
    errors: list[dict[str, Any]] = field(default_factory=list)


def price_fields(quote: CheckoutQuote) -> dict[str, Any]:
    """Root price columns derived from a quote."""
    return {
        "purchase_price": to_storage(quote.purchase_price),
        "total_price": to_storage(quote.total_price),
        "selected_add_ons": list(quote.selected_add_ons),
        "discount_code": quote.coupon_code,
    }


def coupon_terms(result: CouponValidationResult | None) -> dict[str, Any] | None:
    """Discount terms frozen onto a purchase with its coupon."""
    if not result or not result.discount:
        return None
    return {"couponId": (result.coupon or {}).get("id"), **result.discount.to_metadata()}


def price_mirrors(quote: CheckoutQuote) -> dict[str, Any]:
    """Metadata copies of the root prices, kept for gateway bookkeeping."""
    return {
        "totalPrice": to_storage(quote.total_price),
        "originalPrice": to_storage(quote.purchase_price),
        "tierPrice": to_storage(quote.tier_price),
        "appliedDiscount": to_storage(quote.applied_discount),
        "addOnValue": to_storage(quote.add_on_value),
        "couponCode": quote.coupon_code,
        "couponTerms": coupon_terms(quote.coupon),
    }


class PurchaseService:
    """Service for creating purchases and reading or editing them before payment.

    Status changes are not made here; they belong to gateway reconciliation.
    """

    def __init__(
        self,
        client: Client,
        settings: Settings,
        catalog: CatalogService | None = None,
        coupons: CouponService | None = None,
        pricing: PricingService | None = None,
        resolver: ProgramResolver | None = None,
        order_numbers: OrderNumberGenerator | None = None,
    ) -> None:
        """Initialize purchase service.

        Args:
            client: Supabase client shared by the application.
            settings: Application settings.
            catalog: Catalog lookups; built from ``client`` when omitted.
            coupons: Coupon validation; built from ``client`` when omitted.
            pricing: Checkout pricing; built from catalog and coupons when omitted.
            resolver: Program resolution; default strategies when omitted.
            order_numbers: Order number allocation.
        """
        self.client = client
        self.settings = settings
        self.catalog = catalog or CatalogService(client)
        self.coupons = coupons or CouponService(client, self.catalog)
        self.pricing = pricing or PricingService(self.catalog, self.coupons)
        self.resolver = resolver or ProgramResolver(self.catalog)
        self.order_numbers = order_numbers or OrderNumberGenerator(client, settings)
        self._insert_numbered = retry(
            retry=retry_if_exception(is_order_number_clash),
            stop=stop_after_attempt(INSERT_ATTEMPTS),
            wait=wait_random(min=0.01, max=0.05),
            reraise=True,
        )(self._insert_with_new_number)

    async def create_purchase(self, data: PurchaseCreate) -> Purchase:
        """Create a pending purchase priced on the server.

        The coupon is validated with the customer's identity, so per-user
        limits apply. A redemption is recorded when a coupon is used.

        Args:
            data: Validated purchase request.

        Returns:
            dict: The inserted purchase row.

        Raises:
            UnresolvableProgramError: If no program matches the request.
            PricingError: If the program cannot be priced.
            CouponValidationError: If the coupon cannot be applied.
            PurchaseValidationError: If the order number is already used.
        """
        program_id = await self.resolver.resolve(
            ProgramLookup(
                program_id=data.program_id,
                product_id=data.product_id,
                variation_id=data.variation_id,
                program_name=data.program_name,
                category=data.category,
                tier_id=data.tier_id,
                account_size=data.account_size,
            )
        )

        email = str(data.customer.email).lower()
        quote = await self.pricing.quote(
            program_id=program_id,
            account_size=data.account_size,
            tier_id=data.tier_id,
            purchase_type=data.purchase_type,
            reset_product_type=data.reset_product_type,
            add_on_ids=data.add_on_ids,
            coupon_code=data.coupon_code,
            user_id=data.user_id,
            user_email=email,
        )

        if data.order_number and await self.get_by_order_number(data.order_number):
            raise PurchaseValidationError(f"Order number {data.order_number} already exists", field="order_number")

        coupon = quote.coupon.coupon if quote.coupon else None
        affiliate_username = (coupon or {}).get("affiliate_username") or data.affiliate_username
        tier_id = str(quote.tier.get("id")) if quote.tier.get("id") else data.tier_id

        metadata: dict[str, Any] = {
            **price_mirrors(quote),
            "tierId": tier_id,
            "platformSlug": data.platform_slug,
            "customerData": data.customer.model_dump(mode="json", exclude_none=True),
        }
        if data.reset_product_type:
            metadata["resetProductType"] = data.reset_product_type
        if data.account_id:
            metadata["accountId"] = data.account_id

        row: PurchaseRow = {
            "purchase_type": data.purchase_type,
            "program_id": program_id,
            "tier_id": tier_id,
            "account_size": data.account_size,
            "platform_slug": data.platform_slug,
            "currency": data.currency,
            "status": "pending",
            "customer_email": email,
            "customer_name": data.customer.full_name,
            "customer_data": data.customer.model_dump(mode="json", exclude_none=True),
            "user_id": data.user_id,
            "affiliate_username": affiliate_username,
            **price_fields(quote),
            "metadata": metadata,
        }

        if data.purchase_type == "reset-order":
            identifiers = await reset_fee_mapping(self.catalog, row)
            if identifiers:
                metadata["productId"] = identifiers.product_id
                metadata["variationId"] = identifiers.variation_id

        if data.order_number:
            purchase = self._insert_explicit(row, data.order_number)
        else:
            purchase = await self._insert_numbered(row)
        order_number = purchase["order_number"]

        logger.info(
            "Created purchase %s: program=%s type=%s total=%s %s",
            order_number,
            program_id,
            data.purchase_type,
            row["total_price"],
            data.currency,
        )

        if coupon and quote.calculation:
            await self.coupons.record_usage(
                coupon,
                quote.calculation,
                order_reference=order_number,
                program_id=program_id,
                account_size=data.account_size,
                currency=data.currency,
                customer_email=email,
                user_id=data.user_id,
            )

        return purchase

    def _insert_row(self, row: PurchaseRow) -> Purchase:
        response = self.client.table("purchases").insert(row).execute()
        return response.data[0]

    def _insert_explicit(self, row: PurchaseRow, order_number: str) -> Purchase:
        try:
            return self._insert_row({**row, "order_number": order_number})
        except PostgrestAPIError as e:
            if is_order_number_clash(e):
                raise PurchaseValidationError(f"Order number {order_number} already exists", field="order_number") from e
            raise

    async def _insert_with_new_number(self, row: PurchaseRow) -> Purchase:
        order_number = await self.order_numbers.generate()
        try:
            return self._insert_row({**row, "order_number": order_number})
        except PostgrestAPIError as e:
            if is_order_number_clash(e):
                logger.warning("Order number %s was taken by a concurrent checkout, drawing another", order_number)
            raise

    async def create_purchases_batch(self, records: list[dict[str, Any]]) -> BatchResult:
        """Create purchases one by one, counting failures instead of stopping.

        Args:
            records: Raw purchase payloads.

        Returns:
            BatchResult: Created order numbers and skip counts by reason.
        """
        result = BatchResult()
        for index, record in enumerate(records):
            try:
                data = PurchaseCreate.model_validate(record)
                purchase = await self.create_purchase(data)
            except PydanticValidationError as e:
                reason = "invalid_email" if any("email" in err["loc"] for err in e.errors()) else "invalid_record"
                self._skip(result, index, record, reason, str(e))
            except UnresolvableProgramError as e:
                self._skip(result, index, record, "unresolvable_program", str(e))
            except (PricingError, CouponValidationError, PurchaseValidationError) as e:
                self._skip(result, index, record, type(e).__name__, str(e))
            else:
                result.created.append(purchase["order_number"])

        logger.info(
            "Batch purchase creation finished: created=%d skipped=%s",
            len(result.created),
            dict(result.skipped),
        )
        return result

    @staticmethod
    def _skip(result: BatchResult, index: int, record: dict[str, Any], reason: str, message: str) -> None:
        result.skipped[reason] += 1
        result.errors.append({"index": index, "reason": reason, "message": message})
        logger.warning(
            "Skipping purchase record %d (%s): %s",
            index,
            reason,
            message,
            extra={"order_number": record.get("order_number")},
        )

    async def get_by_order_number(self, order_number: str) -> Purchase | None:
        """Get a purchase by order number.

        Args:
            order_number: Unique order number.

        Returns:
            dict | None: Purchase row or None if not found.
        """
        response = (
            self.client.table("purchases")
            .select("*")
            .eq("order_number", str(order_number))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_by_id(self, purchase_id: int) -> Purchase | None:
        """Get a purchase by numeric row id."""
        response = (
            self.client.table("purchases")
            .select("*")
            .eq("id", purchase_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def update_purchase(self, order_number: str, data: PurchaseUpdate) -> Purchase:
        """Re-price a pending purchase after an add-on or coupon change.

        The write is conditional on the purchase still being pending, so an
        edit racing a gateway callback cannot touch a settled order.

        Raises:
            PurchaseNotFoundError: If the purchase does not exist.
            PurchaseNotEditableError: If the purchase is no longer pending.
        """
        purchase = await self.get_by_order_number(order_number)
        if not purchase:
            raise PurchaseNotFoundError(f"Purchase {order_number} not found")
        if purchase["status"] != "pending":
            raise PurchaseNotEditableError(f"Purchase {order_number} is {purchase['status']}")

        if data.add_on_ids is not None:
            add_on_ids = data.add_on_ids
        else:
            add_on_ids = [a["add_on_id"] for a in purchase.get("selected_add_ons") or []]

        current_code = purchase.get("discount_code")
        if data.remove_coupon:
            coupon_code = None
        elif data.coupon_code is not None:
            coupon_code = data.coupon_code
        else:
            coupon_code = current_code

        metadata = purchase.get("metadata") or {}
        applied_coupon = None
        if current_code and coupon_code and coupon_code.strip().upper() == current_code.upper():
            coupon_code = current_code
            applied_coupon = await self.coupons.reapply(
                current_code, purchase["account_size"], terms=metadata.get("couponTerms")
            )

        quote = await self.pricing.quote(
            program_id=purchase["program_id"],
            account_size=purchase["account_size"],
            tier_id=purchase.get("tier_id"),
            purchase_type=purchase.get("purchase_type", "original-order"),
            reset_product_type=metadata.get("resetProductType"),
            add_on_ids=add_on_ids,
            coupon_code=coupon_code,
            user_id=purchase.get("user_id"),
            user_email=purchase.get("customer_email"),
            auto_apply=not data.remove_coupon,
            applied_coupon=applied_coupon,
            order_number=order_number,
        )

        now = datetime.now(timezone.utc).isoformat()
        changes: PurchaseChanges = {
            **price_fields(quote),
            "metadata": {**metadata, **price_mirrors(quote), "pricesUpdatedAt": now},
            "updated_at": now,
        }
        coupon = quote.coupon.coupon if quote.coupon else None
        if coupon and coupon.get("affiliate_username"):
            changes["affiliate_username"] = coupon["affiliate_username"]

        response = (
            self.client.table("purchases")
            .update(changes)
            .eq("order_number", order_number)
            .eq("status", "pending")
            .execute()
        )
        if not response.data:
            raise PurchaseNotEditableError(f"Purchase {order_number} left pending during the update")

        if coupon and quote.calculation and quote.coupon_code != current_code:
            await self.coupons.record_usage(
                coupon,
                quote.calculation,
                order_reference=order_number,
                program_id=purchase["program_id"],
                account_size=purchase["account_size"],
                currency=purchase.get("currency", self.settings.default_currency),
                customer_email=purchase.get("customer_email"),
                user_id=purchase.get("user_id"),
            )

        logger.info("Re-priced pending purchase %s: total=%s", order_number, changes["total_price"])
        return response.data[0]
