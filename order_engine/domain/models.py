from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from order_engine.domain.money import ZERO, round2, to_amount


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    CASH_ON_DELIVERY = "cash-delivery"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


# Stock has been decremented for orders in these states
STOCK_RESERVED_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED)
TERMINAL_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


class Address(BaseModel):
    """Value Object: delivery address"""
    address_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    street_address: Optional[str] = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    country: str = Field(min_length=1)
    zip: Optional[str] = None
    postal_code: Optional[str] = None

    @property
    def postcode(self) -> Optional[str]:
        return self.zip or self.postal_code

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or (self.address_name or "")


class OrderItem(BaseModel):
    """Value Object: one order line"""
    id: str = Field(min_length=1)
    name: str
    price: Decimal = Field(ge=0)
    sale_price: Optional[Decimal] = None
    quantity: int = Field(ge=1)
    total: Optional[Decimal] = None
    commission_amount: Decimal = ZERO
    vendor: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_email: Optional[str] = None

    @field_validator("commission_amount", mode="before")
    @classmethod
    def _parse_commission(cls, value):
        # stored per product, frequently as a string; held in whole cents
        return round2(value)

    @field_validator("sale_price", mode="before")
    @classmethod
    def _parse_sale_price(cls, value):
        if value is None or value == "":
            return None
        return to_amount(value)

    @model_validator(mode="after")
    def _line_total(self):
        if self.total is None:
            self.total = self.unit_price * self.quantity
        return self

    @property
    def unit_price(self) -> Decimal:
        if self.sale_price is not None and ZERO < self.sale_price <= self.price:
            return self.sale_price
        return self.price


class ActionEntry(BaseModel):
    """Immutable audit record of one status change"""
    model_config = ConfigDict(frozen=True)

    action: str
    timestamp: datetime
    performed_by: str
    previous_status: Optional[OrderStatus] = None
    new_status: OrderStatus
    details: Optional[str] = None
    reason: Optional[str] = None


class Order(BaseModel):
    """Domain Entity: order document"""
    order_id: str
    user_id: str
    user_email: Optional[str] = None
    items: list[OrderItem] = Field(min_length=1)
    address: Address
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.PENDING

    subtotal: Decimal = Field(default=ZERO, ge=0)
    shipping: Decimal = Field(default=ZERO, ge=0)
    discount: Decimal = Field(default=ZERO, ge=0)
    commission: Decimal = Field(default=ZERO, ge=0)
    total_commission: Decimal = Field(default=ZERO, ge=0)
    total: Decimal = Field(default=ZERO, ge=0)

    coupon_code: Optional[str] = None
    order_note: Optional[str] = None
    idempotency_key: Optional[str] = None
    action_history: list[ActionEntry] = Field(default_factory=list)

    shiprocket_order_id: Optional[str] = None
    shiprocket_shipment_id: Optional[str] = None
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None

    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None

    version: int = 0
    created_at: datetime
    updated_at: datetime

    def can_be_confirmed(self) -> bool:
        """Only a pending order can be confirmed"""
        return self.order_status == OrderStatus.PENDING

    def can_be_cancelled(self) -> bool:
        return self.order_status not in TERMINAL_STATUSES

    def can_be_refunded(self) -> bool:
        return self.order_status in STOCK_RESERVED_STATUSES

    def can_be_shipped(self) -> bool:
        return self.order_status == OrderStatus.CONFIRMED

    def can_be_delivered(self) -> bool:
        return self.order_status == OrderStatus.SHIPPED

    def has_reserved_stock(self) -> bool:
        return self.order_status in STOCK_RESERVED_STATUSES

    def is_terminal(self) -> bool:
        return self.order_status in TERMINAL_STATUSES


class Coupon(BaseModel):
    id: Optional[str] = None
    code: str
    discount_type: DiscountType
    discount_value: Decimal = ZERO
    min_order_amount: Optional[Decimal] = None
    total_quantity: int
    usage_count: int = 0
    usage_limit: Optional[int] = None
    per_user_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_to: datetime
    is_active: bool = True

    @field_validator("discount_value", "min_order_amount", mode="before")
    @classmethod
    def _parse_amount(cls, value):
        if value is None:
            return None
        return to_amount(value)

    @field_validator("valid_from", "valid_to")
    @classmethod
    def _aware(cls, value):
        return _as_utc(value)


class StockShortage(BaseModel):
    product_id: str
    requested: int
    available: int


class StockError(BaseModel):
    product_id: str
    error: str


class StockCheckResult(BaseModel):
    can_fulfill: bool = True
    insufficient_stock: list[StockShortage] = Field(default_factory=list)
    errors: list[StockError] = Field(default_factory=list)


class StockUpdateResult(BaseModel):
    success: bool = True
    updated_products: list[str] = Field(default_factory=list)
    insufficient_stock: list[StockShortage] = Field(default_factory=list)
    errors: list[StockError] = Field(default_factory=list)


class StockLevel(BaseModel):
    product_id: str
    stock: int
    status: str
    exists: bool


class ShipmentInfo(BaseModel):
    """Value Object: shipment created by the shipping provider"""
    provider_order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None
