from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from pydantic import BaseModel

from order_engine.domain.commission import DEFAULT_COMMISSION_RATE, calculate_order_commission
from order_engine.domain.discount import apply_coupon
from order_engine.domain.exceptions import InvalidCouponError
from order_engine.domain.models import Address, Coupon, Order, OrderItem
from order_engine.domain.money import ZERO, round2
from order_engine.domain.shipping import FLAT_SHIPPING_FEE, FREE_SHIPPING_THRESHOLD, RateTable, calculate_shipping


@dataclass(frozen=True)
class PricingConfig:
    free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD
    flat_shipping_fee: Decimal = FLAT_SHIPPING_FEE
    default_commission_rate: Decimal = DEFAULT_COMMISSION_RATE


class PricedOrder(BaseModel):
    subtotal: Decimal
    shipping: Decimal
    discount: Decimal
    commission: Decimal
    total: Decimal
    coupon_code: Optional[str] = None


def price_order(
    items: Iterable[OrderItem],
    address: Address,
    coupon: Optional[Coupon],
    rate_table: Optional[RateTable],
    now: datetime,
    config: PricingConfig = PricingConfig(),
    coupon_uses: int = 0,
) -> PricedOrder:
    """Compute every monetary field of a new order.

    Raises InvalidCouponError when a coupon is supplied but cannot be applied.
    """
    items = list(items)
    subtotal = round2(sum((item.total for item in items), ZERO))

    discount = ZERO
    free_shipping = False
    coupon_code = None
    if coupon is not None:
        result = apply_coupon(coupon, subtotal, now, user_usage=coupon_uses)
        if not result.valid:
            raise InvalidCouponError(coupon.code, result.reason)
        discount = result.discount_amount
        free_shipping = result.free_shipping
        coupon_code = coupon.code

    shipping = round2(calculate_shipping(
        address.country,
        address.state,
        address.city,
        subtotal,
        rate_table,
        free_shipping=free_shipping,
        threshold=config.free_shipping_threshold,
        flat_fee=config.flat_shipping_fee,
    ))

    return PricedOrder(
        subtotal=subtotal,
        shipping=shipping,
        discount=discount,
        commission=calculate_order_commission(items, config.default_commission_rate),
        total=round2(subtotal + shipping - discount),
        coupon_code=coupon_code,
    )


def totals_reconcile(order: Order) -> bool:
    return round2(order.subtotal + order.shipping - order.discount) == round2(order.total)
