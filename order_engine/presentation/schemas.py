from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from order_engine.domain.models import (
    ActionEntry, Address, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, StockLevel, StockShortage
)


class CreateOrderRequest(BaseModel):
    user_id: str
    user_email: Optional[str] = None
    items: list[OrderItem] = Field(min_length=1)
    address: Address
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    coupon_code: Optional[str] = None
    order_note: Optional[str] = None
    idempotency_key: str
    performed_by: str = "system"


class ConfirmOrderRequest(BaseModel):
    performed_by: str = Field(min_length=1)
    details: Optional[str] = None


class ReasonRequest(BaseModel):
    performed_by: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class OrderResponse(BaseModel):
    order_id: str
    user_id: str
    order_status: OrderStatus
    payment_status: PaymentStatus
    items: list[OrderItem]
    subtotal: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    total_commission: Decimal
    coupon_code: Optional[str] = None
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, order):
        return cls(
            order_id=order.order_id,
            user_id=order.user_id,
            order_status=order.order_status,
            payment_status=order.payment_status,
            items=order.items,
            subtotal=order.subtotal,
            shipping=order.shipping,
            discount=order.discount,
            total=order.total,
            total_commission=order.total_commission,
            coupon_code=order.coupon_code,
            awb_code=order.awb_code,
            courier_name=order.courier_name,
            created_at=order.created_at,
            updated_at=order.updated_at
        )


class TransitionResponse(BaseModel):
    success: bool
    applicable: bool
    errors: list[str]
    warnings: list[str]
    order_id: str
    order_status: OrderStatus
    stock_reduced: bool
    stock_restored: bool
    shipment_created: bool
    email_sent: bool
    insufficient_stock: list[StockShortage]

    @classmethod
    def from_result(cls, result):
        return cls(
            success=result.success,
            applicable=result.applicable,
            errors=result.errors,
            warnings=result.warnings,
            order_id=result.order.order_id,
            order_status=result.order.order_status,
            stock_reduced=result.stock_reduced,
            stock_restored=result.stock_restored,
            shipment_created=result.shipment_created,
            email_sent=result.email_sent,
            insufficient_stock=result.insufficient_stock
        )


class OrderStatusResponse(BaseModel):
    order: OrderResponse
    status_description: str
    stock_status: list[StockLevel]
    tracking_info: Optional[dict] = None
    warnings: list[str] = []


class HistoryResponse(BaseModel):
    order_id: str
    entries: list[ActionEntry]


class CouponValidationRequest(BaseModel):
    code: str
    cart_subtotal: Decimal = Field(ge=0)


class CouponValidationResponse(BaseModel):
    valid: bool
    discount_amount: Decimal
    free_shipping: bool
    reason: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
