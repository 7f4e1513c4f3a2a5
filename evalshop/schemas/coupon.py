"""Coupon Pydantic schemas for API request/response models."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CouponValidateRequest(BaseModel):
    """Schema for validating a coupon via POST /coupons/validate."""

    model_config = ConfigDict(from_attributes=True)

    code: str = Field(min_length=1, description="Coupon code")
    program_id: str = Field(min_length=1, description="Program identifier")
    account_size: str = Field(min_length=1, description="Account-size tier label")
    user_id: str | None = Field(default=None, description="Authenticated user id")
    user_email: EmailStr | None = Field(default=None, description="Customer email if known")
    order_amount: float | None = Field(default=None, ge=0, description="Price to compute the discount against")


class CouponValidationResponse(BaseModel):
    """Schema for a coupon validation result.

    Invalid coupons are a normal response, not an error.
    """

    model_config = ConfigDict(from_attributes=True)

    valid: bool = Field(description="Whether the coupon applies")
    code: str | None = Field(default=None, description="Normalized coupon code")
    error_code: str | None = Field(default=None, description="Machine-readable failure reason")
    error: str | None = Field(default=None, description="Human-readable failure reason")
    discount_type: str | None = Field(default=None, description="percentage or fixed")
    discount_value: float | None = Field(default=None, description="Discount percentage or amount")
    max_discount_amount: float | None = Field(default=None, description="Discount cap")
    discount_amount: float | None = Field(default=None, description="Discount on order_amount")
    final_price: float | None = Field(default=None, description="order_amount after discount")
