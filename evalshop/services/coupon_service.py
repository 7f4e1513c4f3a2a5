"""Coupon validation and redemption bookkeeping."""

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from supabase import Client

from evalshop.core.money import to_decimal, to_storage
from evalshop.models.coupon import Coupon, CouponUsage
from evalshop.services.catalog_service import CatalogService, normalize_account_size
from evalshop.services.discount_calculator import DiscountCalculation, calculate_discount

logger = logging.getLogger(__name__)

# Purchase statuses that bind a customer to the affiliate who referred them
BINDING_STATUSES = ("pending", "completed", "refunded")


class CouponErrorCode:
    """Machine-readable coupon failure codes."""

    NOT_FOUND = "not_found"
    MANUAL_ENTRY_NOT_ALLOWED = "manual_entry_not_allowed"
    NOT_ACTIVE = "not_active"
    NOT_YET_ACTIVE = "not_yet_active"
    EXPIRED = "expired"
    PROGRAM_NOT_ELIGIBLE = "program_not_eligible"
    PROGRAM_EXCLUDED = "program_excluded"
    NOT_ELIGIBLE = "not_eligible"
    USAGE_LIMIT_EXCEEDED = "usage_limit_exceeded"
    USER_USAGE_LIMIT_EXCEEDED = "user_usage_limit_exceeded"
    AFFILIATE_MISMATCH = "affiliate_mismatch"


ERROR_MESSAGES: dict[str, str] = {
    CouponErrorCode.NOT_FOUND: "Invalid coupon code",
    CouponErrorCode.MANUAL_ENTRY_NOT_ALLOWED: "This coupon code cannot be entered manually",
    CouponErrorCode.NOT_ACTIVE: "This coupon is not active",
    CouponErrorCode.NOT_YET_ACTIVE: "This coupon is not yet valid",
    CouponErrorCode.EXPIRED: "This coupon has expired",
    CouponErrorCode.PROGRAM_NOT_ELIGIBLE: "This coupon is not valid for the selected program",
    CouponErrorCode.PROGRAM_EXCLUDED: "This coupon cannot be used with the selected program",
    CouponErrorCode.NOT_ELIGIBLE: "This coupon is not available for your account",
    CouponErrorCode.USAGE_LIMIT_EXCEEDED: "This coupon has reached its usage limit",
    CouponErrorCode.USER_USAGE_LIMIT_EXCEEDED: "You have already used this coupon the maximum number of times",
    CouponErrorCode.AFFILIATE_MISMATCH: "This coupon is not applicable as you are bound to another affiliate.",
}


@dataclass(frozen=True)
class FrozenDiscount:
    """Discount terms copied from a coupon at validation time."""

    discount_type: str
    discount_value: Decimal
    max_discount_amount: Decimal | None = None

    def apply(self, original_price: Any) -> DiscountCalculation:
        """Run the discount calculator with these terms."""
        return calculate_discount(
            original_price,
            self.discount_type,
            self.discount_value,
            self.max_discount_amount,
        )

    def to_metadata(self) -> dict[str, Any]:
        """Terms in the shape stored on a purchase."""
        return {
            "discountType": self.discount_type,
            "discountValue": to_storage(self.discount_value),
            "maxDiscountAmount": to_storage(self.max_discount_amount) if self.max_discount_amount else None,
        }

    @classmethod
    def from_metadata(cls, terms: dict[str, Any]) -> "FrozenDiscount":
        """Rebuild terms stored by ``to_metadata``."""
        cap = terms.get("maxDiscountAmount")
        return cls(
            discount_type=terms["discountType"],
            discount_value=to_decimal(terms["discountValue"]),
            max_discount_amount=to_decimal(cap) if cap else None,
        )


@dataclass(frozen=True)
class CouponValidationResult:
    """Outcome of validating a coupon code for a purchase context."""

    valid: bool
    coupon: Coupon | None = None
    discount: FrozenDiscount | None = None
    calculation: DiscountCalculation | None = None
    error_code: str | None = None
    error: str | None = None

    @classmethod
    def failure(cls, code: str, coupon: Coupon | None = None) -> "CouponValidationResult":
        """Build a failed result carrying the standard message for ``code``."""
        return cls(valid=False, coupon=coupon, error_code=code, error=ERROR_MESSAGES[code])


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp, treating naive values as UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def freeze_discount(coupon: Coupon, account_size: str | None) -> FrozenDiscount:
    """Resolve the discount terms for an account size.

    A matching ``account_size_discounts`` entry overrides the coupon-level
    type, value and cap.
    """
    discount_type = coupon.get("discount_type", "percentage")
    discount_value: Any = coupon.get("discount_value")
    max_discount: Any = coupon.get("max_discount_amount")

    wanted = normalize_account_size(account_size)
    for override in coupon.get("account_size_discounts") or []:
        if wanted and normalize_account_size(override.get("account_size")) == wanted:
            discount_type = override.get("discount_type") or discount_type
            if override.get("discount_value") is not None:
                discount_value = override["discount_value"]
            if "max_discount_amount" in override:
                max_discount = override["max_discount_amount"]
            break

    cap = to_decimal(max_discount) if max_discount else None
    return FrozenDiscount(
        discount_type=discount_type,
        discount_value=to_decimal(discount_value),
        max_discount_amount=cap,
    )


class CouponService:
    """Service for validating coupons and recording their redemptions.

    Usage caps are counted at validation time without locking, so two
    redemptions racing for the last slot may both succeed.
    """

    def __init__(
        self,
        client: Client,
        catalog: CatalogService | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize coupon service.

        Args:
            client: Supabase client shared by the application.
            catalog: Catalog lookups; built from ``client`` when omitted.
            clock: Returns the current time; defaults to UTC now.
        """
        self.client = client
        self.catalog = catalog or CatalogService(client)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def validate(
        self,
        code: str,
        program_id: str,
        account_size: str,
        user_id: str | None = None,
        user_email: str | None = None,
        order_amount: Any = None,
        order_number: str | None = None,
    ) -> CouponValidationResult:
        """Validate a manually entered coupon code.

        Checks run in order: existence, status and validity window, program
        restriction, user restriction, affiliate binding, global cap,
        per-user cap. Without a user id or email the user restriction and
        per-user cap are skipped, and without an email the affiliate
        binding is; they are enforced again when the purchase is created.

        Args:
            code: Coupon code as typed by the customer.
            program_id: Program being purchased.
            account_size: Account-size tier being purchased.
            user_id: Optional authenticated user id.
            user_email: Optional customer email.
            order_amount: Optional price to compute the discount against.
            order_number: Purchase being edited, left out of the affiliate binding.

        Returns:
            CouponValidationResult: Frozen discount terms or a failure reason.
        """
        normalized_code = (code or "").strip().upper()
        if not normalized_code:
            return CouponValidationResult.failure(CouponErrorCode.NOT_FOUND)

        coupon = await self.catalog.get_coupon_by_code(normalized_code)
        if not coupon:
            logger.info("Coupon lookup failed for code %s", normalized_code)
            return CouponValidationResult.failure(CouponErrorCode.NOT_FOUND)

        if coupon.get("prevent_manual_entry"):
            return CouponValidationResult.failure(CouponErrorCode.MANUAL_ENTRY_NOT_ALLOWED)

        return await self._evaluate(
            coupon,
            program_id=program_id,
            account_size=account_size,
            user_id=user_id,
            user_email=user_email,
            order_amount=order_amount,
            order_number=order_number,
        )

    async def find_auto_apply_coupon(
        self,
        program_id: str,
        account_size: str,
        user_id: str | None = None,
        user_email: str | None = None,
        order_amount: Any = None,
        order_number: str | None = None,
    ) -> CouponValidationResult | None:
        """Return the highest-priority auto-apply coupon that validates.

        Returns:
            CouponValidationResult | None: First valid result, or None.
        """
        for coupon in await self.catalog.list_auto_apply_coupons():
            result = await self._evaluate(
                coupon,
                program_id=program_id,
                account_size=account_size,
                user_id=user_id,
                user_email=user_email,
                order_amount=order_amount,
                order_number=order_number,
            )
            if result.valid:
                logger.info("Auto-applying coupon %s", coupon.get("code"))
                return result
        return None

    async def reapply(
        self,
        code: str,
        account_size: str,
        terms: dict[str, Any] | None = None,
    ) -> CouponValidationResult | None:
        """Rebuild the result of a coupon already attached to a purchase.

        Eligibility, manual-entry and usage caps are not checked again: the
        purchase's own redemption already counts against them. Terms frozen
        on the purchase win over the coupon's current terms.

        Args:
            code: Coupon code stored on the purchase.
            account_size: Account-size tier of the purchase.
            terms: Discount terms stored on the purchase, if any.

        Returns:
            CouponValidationResult | None: Valid result, or None if the
            coupon no longer exists and no terms were stored.
        """
        if terms and terms.get("discountType"):
            coupon: Coupon = {"id": terms.get("couponId"), "code": code}
            return CouponValidationResult(valid=True, coupon=coupon, discount=FrozenDiscount.from_metadata(terms))

        coupon = await self.catalog.get_coupon_by_code(code.strip().upper())
        if not coupon:
            logger.warning("Coupon %s attached to a purchase no longer exists", code)
            return None
        return CouponValidationResult(
            valid=True,
            coupon=copy.deepcopy(coupon),
            discount=freeze_discount(coupon, account_size),
        )

    async def _evaluate(
        self,
        coupon: Coupon,
        program_id: str,
        account_size: str,
        user_id: str | None,
        user_email: str | None,
        order_amount: Any,
        order_number: str | None = None,
    ) -> CouponValidationResult:
        now = self._clock()

        status = coupon.get("status")
        try:
            valid_from = parse_timestamp(coupon.get("valid_from"))
            valid_to = parse_timestamp(coupon.get("valid_to"))
        except ValueError:
            logger.warning(
                "Coupon %s has an unreadable validity window: from=%r to=%r",
                coupon.get("code"),
                coupon.get("valid_from"),
                coupon.get("valid_to"),
            )
            return CouponValidationResult.failure(CouponErrorCode.NOT_ACTIVE)

        if status == "expired" or (valid_to is not None and now > valid_to):
            return CouponValidationResult.failure(CouponErrorCode.EXPIRED)
        if status != "active":
            return CouponValidationResult.failure(CouponErrorCode.NOT_ACTIVE)
        if valid_from is not None and now < valid_from:
            return CouponValidationResult.failure(CouponErrorCode.NOT_YET_ACTIVE)

        program_error = self._check_program_restriction(coupon, program_id)
        if program_error:
            return CouponValidationResult.failure(program_error)

        email = user_email.strip().lower() if user_email else None
        has_identity = bool(user_id or email)

        if has_identity and not self._is_user_allowed(coupon, user_id, email):
            return CouponValidationResult.failure(CouponErrorCode.NOT_ELIGIBLE)

        coupon_affiliate = coupon.get("affiliate_username")
        if coupon_affiliate and email:
            bound = await self.bound_affiliate(email, exclude_order=order_number)
            if bound and bound.strip().lower() != str(coupon_affiliate).strip().lower():
                logger.info(
                    "Coupon %s belongs to affiliate %s but %s is bound to %s",
                    coupon.get("code"),
                    coupon_affiliate,
                    email,
                    bound,
                )
                return CouponValidationResult.failure(CouponErrorCode.AFFILIATE_MISMATCH)

        total_limit = coupon.get("total_usage_limit") or 0
        if total_limit > 0 and await self.count_usages(coupon["id"]) >= total_limit:
            return CouponValidationResult.failure(CouponErrorCode.USAGE_LIMIT_EXCEEDED)

        per_user_limit = coupon.get("usage_per_user") or 0
        if has_identity and per_user_limit > 0:
            used = await self.count_usages(coupon["id"], user_id=user_id, user_email=email)
            if used >= per_user_limit:
                return CouponValidationResult.failure(CouponErrorCode.USER_USAGE_LIMIT_EXCEEDED)

        discount = freeze_discount(coupon, account_size)
        calculation = discount.apply(order_amount) if order_amount is not None else None

        return CouponValidationResult(
            valid=True,
            coupon=copy.deepcopy(coupon),
            discount=discount,
            calculation=calculation,
        )

    @staticmethod
    def _check_program_restriction(coupon: Coupon, program_id: str) -> str | None:
        restriction = coupon.get("restriction_type") or "all"
        programs = {str(p) for p in coupon.get("restricted_programs") or []}
        if restriction == "whitelist" and str(program_id) not in programs:
            return CouponErrorCode.PROGRAM_NOT_ELIGIBLE
        if restriction == "blacklist" and str(program_id) in programs:
            return CouponErrorCode.PROGRAM_EXCLUDED
        return None

    @staticmethod
    def _is_user_allowed(coupon: Coupon, user_id: str | None, email: str | None) -> bool:
        allowed = {str(u).strip().lower() for u in coupon.get("restricted_users") or []}
        if not allowed:
            return True
        return bool(
            (user_id and str(user_id).lower() in allowed)
            or (email and email in allowed)
        )

    async def bound_affiliate(self, email: str, exclude_order: str | None = None) -> str | None:
        """Affiliate of the customer's oldest affiliated purchase, if any.

        Failed purchases do not bind a customer.
        """
        response = (
            self.client.table("purchases")
            .select("order_number, affiliate_username")
            .eq("customer_email", email.lower())
            .in_("status", list(BINDING_STATUSES))
            .order("created_at")
            .limit(100)
            .execute()
        )
        for row in response.data or []:
            if exclude_order and str(row.get("order_number")) == str(exclude_order):
                continue
            if row.get("affiliate_username"):
                return row["affiliate_username"]
        return None

    async def count_usages(
        self,
        coupon_id: str,
        user_id: str | None = None,
        user_email: str | None = None,
    ) -> int:
        """Count recorded redemptions of a coupon, optionally for one customer.

        Email identifies the customer when present; otherwise the user id.
        """
        query = (
            self.client.table("coupon_usages")
            .select("id", count="exact")
            .eq("coupon_id", str(coupon_id))
        )
        if user_email:
            query = query.eq("customer_email", user_email.lower())
        elif user_id:
            query = query.eq("user_id", str(user_id))
        response = query.execute()
        if response.count is not None:
            return response.count
        return len(response.data or [])

    async def record_usage(
        self,
        coupon: Coupon,
        calculation: DiscountCalculation,
        order_reference: str,
        program_id: str,
        account_size: str,
        currency: str,
        customer_email: str | None = None,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CouponUsage:
        """Append a redemption record.

        Rows are never updated or deleted; they back both usage caps and
        reporting.

        Returns:
            dict: The inserted coupon usage row.
        """
        usage: CouponUsage = {
            "coupon_id": str(coupon["id"]),
            "coupon_code": coupon.get("code", ""),
            "customer_email": customer_email.lower() if customer_email else None,
            "user_id": str(user_id) if user_id else None,
            "program_id": str(program_id),
            "account_size": account_size,
            "original_price": to_storage(calculation.original_price),
            "discount_amount": to_storage(calculation.discount_amount),
            "final_price": to_storage(calculation.final_price),
            "discount_type": calculation.discount_type,
            "discount_value": to_storage(calculation.discount_value),
            "order_reference": order_reference,
            "currency": currency,
            "used_at": self._clock().isoformat(),
            "metadata": metadata or {},
        }
        response = self.client.table("coupon_usages").insert(usage).execute()
        logger.info(
            "Recorded coupon usage: code=%s order=%s discount=%s",
            usage["coupon_code"],
            order_reference,
            usage["discount_amount"],
        )
        return response.data[0] if response.data else usage

