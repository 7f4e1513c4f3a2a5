"""Coupon model type definitions for database operations."""

from datetime import datetime
from typing import Any, Literal, TypedDict


DiscountType = Literal["percentage", "fixed"]

CouponStatus = Literal["active", "disabled", "expired"]

ProgramRestrictionType = Literal["all", "whitelist", "blacklist"]


class AccountSizeDiscount(TypedDict, total=False):
    """Per-account-size override of a coupon's discount."""

    account_size: str
    discount_type: DiscountType
    discount_value: float
    max_discount_amount: float | None


class Coupon(TypedDict, total=False):
    """Coupons table row representation.

    Operator-managed reference data; checkout only reads it.
    """

    id: str
    code: str
    description: str | None
    discount_type: DiscountType
    discount_value: float
    max_discount_amount: float | None
    valid_from: datetime | str
    valid_to: datetime | str | None
    status: CouponStatus
    restriction_type: ProgramRestrictionType
    restricted_programs: list[str]
    restricted_users: list[str]
    account_size_discounts: list[AccountSizeDiscount]
    total_usage_limit: int | None
    usage_per_user: int | None
    auto_apply: bool
    auto_apply_priority: int
    prevent_manual_entry: bool
    affiliate_username: str | None


class CouponUsage(TypedDict, total=False):
    """Coupon usages table row representation.

    Append-only: one row per redemption, never updated or deleted.
    """

    id: str
    coupon_id: str
    coupon_code: str
    customer_email: str | None
    user_id: str | None
    program_id: str
    account_size: str
    original_price: float
    discount_amount: float
    final_price: float
    discount_type: DiscountType
    discount_value: float
    order_reference: str
    currency: str
    used_at: datetime | str
    metadata: dict[str, Any]
