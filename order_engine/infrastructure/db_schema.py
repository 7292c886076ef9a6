from sqlalchemy import Table, Column, String, Integer, Enum, DateTime, JSON, MetaData, Numeric, Boolean
from sqlalchemy.sql import func

from order_engine.domain.models import OrderStatus

metadata = MetaData()


orders_tbl = Table(
    "orders",
    metadata,
    Column("order_id", String, primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("idempotency_key", String, unique=True, index=True, nullable=True),
    Column("coupon_code", String, nullable=True, index=True),
    Column(
        "order_status",
        Enum(OrderStatus, name="order_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.PENDING,
    ),
    Column("payment_status", String, nullable=False, default="pending"),
    # full order document, money as strings
    Column("document", JSON, nullable=False),
    Column("version", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("stock_quantity", Integer, nullable=False, default=0),
    Column("stock_status", String, nullable=False, default="in_stock"),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


coupons_tbl = Table(
    "coupons",
    metadata,
    Column("id", String, primary_key=True),
    Column("code", String, unique=True, index=True, nullable=False),
    Column("discount_type", String, nullable=False),
    Column("discount_value", Numeric(12, 2), nullable=False, default=0),
    Column("min_order_amount", Numeric(12, 2), nullable=True),
    Column("total_quantity", Integer, nullable=False),
    Column("usage_count", Integer, nullable=False, default=0),
    Column("usage_limit", Integer, nullable=True),
    Column("per_user_limit", Integer, nullable=True),
    Column("valid_from", DateTime(timezone=True), nullable=True),
    Column("valid_to", DateTime(timezone=True), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


shipping_rates_tbl = Table(
    "shipping_rates",
    metadata,
    Column("id", String, primary_key=True),
    Column("country", String, nullable=False),
    Column("state", String, nullable=False),
    Column("city", String, nullable=False),
    Column("price", Numeric(12, 2), nullable=False)
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False, index=True),
    Column("status", String, default="pending"),
    Column("attempts", Integer, nullable=False, default=0),
    Column("last_error", String, nullable=True),
    Column("next_attempt_at", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("published_at", DateTime(timezone=True), nullable=True)
)


inbox_events_tbl = Table(
    "inbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("idempotency_key", String, unique=True, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("processed_at", DateTime(timezone=True), nullable=True)
)
