"""Checkout and purchase Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


PurchaseType = Literal["original-order", "reset-order", "activation-order"]
PurchaseStatus = Literal["pending", "completed", "failed", "refunded"]
Currency = Literal["USD", "EUR", "GBP"]
ResetProductType = Literal["evaluation", "funded"]


class CustomerDetails(BaseModel):
    """Billing details captured at checkout."""

    model_config = ConfigDict(from_attributes=True)

    first_name: str = Field(min_length=1, description="Customer first name")
    last_name: str = Field(min_length=1, description="Customer last name")
    email: EmailStr = Field(description="Customer email")
    phone: str | None = Field(default=None, description="Phone number")
    address: str | None = Field(default=None, description="Street address")
    city: str | None = Field(default=None, description="City")
    state: str | None = Field(default=None, description="State or region")
    postal_code: str | None = Field(default=None, description="Postal code")
    country: str | None = Field(default=None, description="ISO country code")

    @property
    def full_name(self) -> str:
        """First and last name joined."""
        return f"{self.first_name} {self.last_name}".strip()


class QuoteRequest(BaseModel):
    """Schema for pricing a checkout via POST /checkout/quote."""

    model_config = ConfigDict(from_attributes=True)

    program_id: str = Field(min_length=1, description="Program identifier")
    account_size: str = Field(min_length=1, description="Account-size tier label")
    tier_id: str | None = Field(default=None, description="Pricing tier id, preferred over account size")
    purchase_type: PurchaseType = Field(default="original-order", description="Kind of purchase")
    reset_product_type: ResetProductType | None = Field(default=None, description="Reset fee variant")
    add_on_ids: list[str] = Field(default_factory=list, description="Selected add-on ids")
    coupon_code: str | None = Field(default=None, description="Coupon code entered by the customer")
    user_id: str | None = Field(default=None, description="Authenticated user id")
    user_email: EmailStr | None = Field(default=None, description="Customer email if known")


class SelectedAddOnSchema(BaseModel):
    """An add-on frozen onto a quote or purchase."""

    model_config = ConfigDict(from_attributes=True)

    add_on_id: str = Field(description="Add-on id")
    percentage: float = Field(description="Percentage loading at pricing time")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Display data")


class QuoteResponse(BaseModel):
    """Schema for a checkout price quote."""

    model_config = ConfigDict(from_attributes=True)

    program_id: str = Field(description="Program identifier")
    tier_id: str | None = Field(default=None, description="Resolved pricing tier id")
    purchase_type: PurchaseType = Field(description="Kind of purchase")
    tier_price: float = Field(description="List price of the tier")
    applied_discount: float = Field(description="Coupon discount amount")
    purchase_price: float = Field(description="Price after coupon, before add-ons")
    add_on_value: float = Field(description="Amount added by add-ons")
    total_price: float = Field(description="Amount to charge")
    coupon_code: str | None = Field(default=None, description="Applied coupon code")
    selected_add_ons: list[SelectedAddOnSchema] = Field(default_factory=list, description="Priced add-ons")


class PurchaseCreate(BaseModel):
    """Schema for creating a purchase via POST /purchases.

    The program may be given directly or resolved from a commerce product,
    a program name or a category.
    """

    model_config = ConfigDict(from_attributes=True)

    order_number: str | None = Field(default=None, description="Order number; generated when omitted")
    purchase_type: PurchaseType = Field(default="original-order", description="Kind of purchase")
    program_id: str | None = Field(default=None, description="Program identifier")
    program_name: str | None = Field(default=None, description="Program name for resolution")
    category: str | None = Field(default=None, description="Program category for resolution")
    product_id: str | None = Field(default=None, description="Commerce product id for resolution")
    variation_id: str | None = Field(default=None, description="Commerce variation id for resolution")
    account_size: str = Field(min_length=1, description="Account-size tier label")
    tier_id: str | None = Field(default=None, description="Pricing tier id")
    platform_slug: str | None = Field(default=None, description="Trading platform slug")
    reset_product_type: ResetProductType | None = Field(default=None, description="Reset fee variant")
    currency: Currency = Field(default="USD", description="Currency tag")
    customer: CustomerDetails = Field(description="Billing details")
    user_id: str | None = Field(default=None, description="Authenticated user id")
    add_on_ids: list[str] = Field(default_factory=list, description="Selected add-on ids")
    coupon_code: str | None = Field(default=None, description="Coupon code")
    affiliate_username: str | None = Field(default=None, description="Referring affiliate from the visit cookie")
    account_id: str | None = Field(default=None, description="Trading account for reset/activation orders")

    @field_validator("order_number", "account_size")
    @classmethod
    def strip_blank(cls, value: str | None) -> str | None:
        """Strip whitespace; blank order numbers mean 'generate one'."""
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("account_size")
    @classmethod
    def require_account_size(cls, value: str | None) -> str:
        """Account size must not be blank."""
        if not value:
            raise ValueError("account_size is required")
        return value


class PurchaseUpdate(BaseModel):
    """Schema for editing a pending purchase via PATCH /purchases/{order_number}."""

    model_config = ConfigDict(from_attributes=True)

    add_on_ids: list[str] | None = Field(default=None, description="Replacement add-on selection")
    coupon_code: str | None = Field(default=None, description="Replacement coupon code")
    remove_coupon: bool = Field(default=False, description="Drop the current coupon")


class PurchaseResponse(BaseModel):
    """Schema for purchase API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int | str = Field(description="Purchase row id")
    order_number: str = Field(description="Unique order number")
    status: PurchaseStatus = Field(description="Purchase status")
    purchase_type: PurchaseType = Field(description="Kind of purchase")
    program_id: str = Field(description="Program identifier")
    tier_id: str | None = Field(default=None, description="Pricing tier id")
    account_size: str = Field(description="Account-size tier label")
    platform_slug: str | None = Field(default=None, description="Trading platform slug")
    purchase_price: float = Field(description="Price after coupon, before add-ons")
    total_price: float = Field(description="Amount charged")
    currency: Currency = Field(description="Currency tag")
    customer_email: str = Field(description="Customer email")
    customer_name: str = Field(description="Customer name")
    discount_code: str | None = Field(default=None, description="Applied coupon code")
    selected_add_ons: list[SelectedAddOnSchema] = Field(default_factory=list, description="Frozen add-ons")
    payment_method: str | None = Field(default=None, description="Gateway payment method tag")
    transaction_id: str | None = Field(default=None, description="Gateway transaction id")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")
