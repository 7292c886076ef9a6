import re
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel

from order_engine.domain.models import Coupon, DiscountType
from order_engine.domain.money import ZERO, percent_of, round2, to_amount

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]+$")


class CouponResult(BaseModel):
    valid: bool
    discount_amount: Decimal = ZERO
    free_shipping: bool = False
    reason: Optional[str] = None


def _rejected(reason: str) -> CouponResult:
    return CouponResult(valid=False, reason=reason)


def apply_coupon(coupon: Optional[Coupon], cart_subtotal, now: datetime, user_usage: int = 0) -> CouponResult:
    """Validate ``coupon`` against the cart and compute its discount.

    Checks run in a fixed order and stop at the first failure, each with its
    own reason. ``user_usage`` is how many orders the customer already placed
    with this coupon. The function has no side effects; usage counters are the
    caller's business.
    """
    subtotal = to_amount(cart_subtotal)

    if coupon is None:
        return _rejected("Coupon not found")
    if not coupon.is_active:
        return _rejected("Coupon is inactive")
    if now >= coupon.valid_to:
        return _rejected("Coupon has expired")
    if coupon.valid_from is not None and now < coupon.valid_from:
        return _rejected("Coupon is not valid yet")
    if coupon.usage_limit and coupon.usage_count >= coupon.usage_limit:
        return _rejected("Coupon usage limit reached")
    if coupon.usage_count >= coupon.total_quantity:
        return _rejected("Coupon is no longer available")
    if coupon.per_user_limit and user_usage >= coupon.per_user_limit:
        return _rejected("Coupon usage limit reached for this customer")
    if coupon.min_order_amount and subtotal < coupon.min_order_amount:
        return _rejected(f"Minimum order amount of {round2(coupon.min_order_amount)} not reached")

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = round2(percent_of(subtotal, coupon.discount_value))
        return CouponResult(valid=True, discount_amount=min(discount, round2(subtotal)))
    if coupon.discount_type == DiscountType.FIXED:
        return CouponResult(valid=True, discount_amount=round2(min(coupon.discount_value, subtotal)))
    return CouponResult(valid=True, free_shipping=True)


def coupon_status(coupon: Coupon, now: datetime) -> str:
    if not coupon.is_active:
        return "inactive"
    if now >= coupon.valid_to:
        return "expired"
    if coupon.usage_limit and coupon.usage_count >= coupon.usage_limit:
        return "usage_limit_reached"
    if coupon.usage_count >= coupon.total_quantity:
        return "sold_out"
    return "active"


def is_valid_coupon_code(code: str) -> bool:
    return bool(COUPON_CODE_PATTERN.match(code)) and 3 <= len(code) <= 20
