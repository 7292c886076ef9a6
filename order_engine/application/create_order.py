import logging
from pydantic import BaseModel, Field
from typing import Optional
import uuid

from order_engine.domain import history
from order_engine.domain.models import Address, Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, utcnow
from order_engine.domain.pricing import PricingConfig, price_order
from order_engine.domain.discount import apply_coupon
from order_engine.domain.exceptions import InvalidCouponError


logger = logging.getLogger(__name__)


class CreateOrderDTO(BaseModel):
    user_id: str
    user_email: Optional[str] = None
    items: list[OrderItem] = Field(min_length=1)
    address: Address
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    coupon_code: Optional[str] = None
    order_note: Optional[str] = None
    idempotency_key: str
    performed_by: str = history.SYSTEM_ACTOR


class CreateOrderUseCase:
    def __init__(self, unit_of_work, pricing: PricingConfig = PricingConfig()):
        self._uow = unit_of_work
        self._pricing = pricing

    async def __call__(self, order_data: CreateOrderDTO) -> Order:
        logger.info(f"Creating order for user {order_data.user_id} with {len(order_data.items)} items")

        async with self._uow() as uow:
            # 1. Idempotency
            existing = await uow.orders.get_by_idempotency_key(order_data.idempotency_key)
            if existing:
                logger.info(f"Order already exists: {existing.order_id}")
                return existing

            # 2. Coupon and shipping rates
            coupon = None
            coupon_uses = 0
            if order_data.coupon_code:
                coupon = await uow.coupons.get_by_code(order_data.coupon_code)
                if coupon is None:
                    raise InvalidCouponError(order_data.coupon_code, "Coupon not found")
                if coupon.per_user_limit:
                    coupon_uses = await uow.orders.count_coupon_uses(order_data.user_id, coupon.code)
            rate_table = await uow.shipping_rates.get_rate_table()

            # 3. Totals
            now = utcnow()
            priced = price_order(
                order_data.items, order_data.address, coupon, rate_table, now, self._pricing, coupon_uses=coupon_uses
            )

            # 4. Order document
            order = Order(
                order_id=str(uuid.uuid4()),
                user_id=order_data.user_id,
                user_email=order_data.user_email,
                items=order_data.items,
                address=order_data.address,
                payment_method=order_data.payment_method,
                payment_status=PaymentStatus.PENDING,
                order_status=OrderStatus.PENDING,
                subtotal=priced.subtotal,
                shipping=priced.shipping,
                discount=priced.discount,
                commission=priced.commission,
                total_commission=priced.commission,
                total=priced.total,
                coupon_code=priced.coupon_code,
                order_note=order_data.order_note,
                idempotency_key=order_data.idempotency_key,
                created_at=now,
                updated_at=now,
            )
            order = history.append(order, history.make_entry(
                history.ORDER_CREATED, None, OrderStatus.PENDING, order_data.performed_by, now=now
            ))
            await uow.orders.create(order)
            if priced.coupon_code and not await uow.coupons.increment_usage(priced.coupon_code):
                # another order took the last use after validation
                raise InvalidCouponError(priced.coupon_code, "Coupon is no longer available")
            await uow.commit()

        logger.info(f"Order created: {order.order_id}, total {order.total}")
        return order


class ValidateCouponUseCase:
    """Preview a coupon against a cart subtotal without applying it"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, code: str, cart_subtotal):
        async with self._uow() as uow:
            coupon = await uow.coupons.get_by_code(code)
        return apply_coupon(coupon, cart_subtotal, utcnow())
