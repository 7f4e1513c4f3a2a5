"""Database model type definitions."""

from evalshop.models.catalog import AddOn, PricingTier, Program, ProgramProductMapping
from evalshop.models.coupon import Coupon, CouponUsage, DiscountType
from evalshop.models.purchase import (
    Purchase,
    PurchaseStatus,
    PurchaseType,
    SelectedAddOn,
    can_transition,
)

__all__ = [
    "AddOn",
    "Coupon",
    "CouponUsage",
    "DiscountType",
    "PricingTier",
    "Program",
    "ProgramProductMapping",
    "Purchase",
    "PurchaseStatus",
    "PurchaseType",
    "SelectedAddOn",
    "can_transition",
]
