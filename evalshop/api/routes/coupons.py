"""Coupon validation routes."""

from fastapi import APIRouter

from evalshop.api.deps import Coupons
from evalshop.schemas.coupon import CouponValidateRequest, CouponValidationResponse

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post(
    "/validate",
    response_model=CouponValidationResponse,
    summary="Validate a coupon code",
    description="Checks a coupon against a program and account size. An invalid coupon is reported in the body, not as an error.",
)
async def validate_coupon(data: CouponValidateRequest, coupons: Coupons) -> CouponValidationResponse:
    """Validate a coupon code for a prospective purchase.

    Args:
        data: Code plus purchase context.
        coupons: Coupon service.

    Returns:
        CouponValidationResponse: Discount terms or the failure reason.
    """
    result = await coupons.validate(
        data.code,
        program_id=data.program_id,
        account_size=data.account_size,
        user_id=data.user_id,
        user_email=str(data.user_email).lower() if data.user_email else None,
        order_amount=data.order_amount,
    )
    if not result.valid:
        return CouponValidationResponse(valid=False, error_code=result.error_code, error=result.error)

    response = CouponValidationResponse(valid=True, code=result.coupon["code"])
    if result.discount:
        response.discount_type = result.discount.discount_type
        response.discount_value = float(result.discount.discount_value)
        if result.discount.max_discount_amount is not None:
            response.max_discount_amount = float(result.discount.max_discount_amount)
    if result.calculation:
        response.discount_amount = float(result.calculation.discount_amount)
        response.final_price = float(result.calculation.final_price)
    return response
