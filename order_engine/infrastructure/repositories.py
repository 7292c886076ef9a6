import uuid
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, case, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.domain.exceptions import ConcurrentModificationError
from order_engine.domain.models import Coupon, Order, StockLevel
from order_engine.domain.shipping import RateTable, ShippingRate
from order_engine.infrastructure.db_schema import (
    orders_tbl, products_tbl, coupons_tbl, shipping_rates_tbl, outbox_events_tbl, inbox_events_tbl
)
from order_engine.application.interfaces import (
    OrderRepository, StockRepository, CouponRepository, ShippingRateRepository, OutboxRepository, InboxRepository
)

OUT_OF_STOCK = "out_of_stock"
IN_STOCK = "in_stock"


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.order_id == order_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.idempotency_key == key)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def count_coupon_uses(self, user_id: str, coupon_code: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(orders_tbl)
            .where(
                orders_tbl.c.user_id == user_id,
                orders_tbl.c.coupon_code == coupon_code.strip().upper()
            )
        )
        return result.scalar_one()

    async def create(self, order: Order) -> None:
        stmt = insert(orders_tbl).values(
            order_id=order.order_id,
            user_id=order.user_id,
            idempotency_key=order.idempotency_key,
            coupon_code=order.coupon_code,
            order_status=order.order_status,
            payment_status=order.payment_status.value,
            document=self._to_document(order),
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at
        )
        await self._session.execute(stmt)

    async def save(self, order: Order, expected_version: int) -> Order:
        saved = order.model_copy(update={"version": expected_version + 1})
        stmt = (
            update(orders_tbl)
            .where(
                orders_tbl.c.order_id == order.order_id,
                orders_tbl.c.version == expected_version
            )
            .values(
                order_status=saved.order_status,
                payment_status=saved.payment_status.value,
                document=self._to_document(saved),
                version=saved.version,
                updated_at=saved.updated_at
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrentModificationError(order.order_id, expected_version)
        return saved

    def _to_document(self, order: Order) -> dict:
        return order.model_dump(mode="json", exclude={"version"})

    def _to_domain(self, row) -> Order:
        """DB row -> Domain"""
        return Order.model_validate({**row.document, "version": row.version})


class SQLAlchemyStockRepository(StockRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_stock(self, product_id: str) -> Optional[StockLevel]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        if not row:
            return None
        return StockLevel(product_id=row.id, stock=row.stock_quantity, status=row.stock_status, exists=True)

    async def set_stock(self, product_id: str, quantity: int) -> None:
        status = IN_STOCK if quantity > 0 else OUT_OF_STOCK
        result = await self._session.execute(
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(stock_quantity=quantity, stock_status=status, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(products_tbl).values(
                    id=product_id,
                    stock_quantity=quantity,
                    stock_status=status,
                    updated_at=datetime.now(timezone.utc)
                )
            )

    async def decrement_if_available(self, product_id: str, quantity: int) -> bool:
        stock = products_tbl.c.stock_quantity
        stmt = (
            update(products_tbl)
            .where(products_tbl.c.id == product_id, stock >= quantity)
            .values(
                stock_quantity=stock - quantity,
                stock_status=case((stock - quantity == 0, OUT_OF_STOCK), else_=products_tbl.c.stock_status),
                updated_at=datetime.now(timezone.utc)
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def increment(self, product_id: str, quantity: int) -> bool:
        stock = products_tbl.c.stock_quantity
        stmt = (
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(
                stock_quantity=stock + quantity,
                stock_status=case((stock == 0, IN_STOCK), else_=products_tbl.c.stock_status),
                updated_at=datetime.now(timezone.utc)
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyCouponRepository(CouponRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self._session.execute(
            select(coupons_tbl).where(coupons_tbl.c.code == code.strip().upper())
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def create(self, coupon: Coupon) -> str:
        coupon_id = coupon.id or str(uuid.uuid4())
        stmt = insert(coupons_tbl).values(
            id=coupon_id,
            code=coupon.code.strip().upper(),
            discount_type=coupon.discount_type.value,
            discount_value=coupon.discount_value,
            min_order_amount=coupon.min_order_amount,
            total_quantity=coupon.total_quantity,
            usage_count=coupon.usage_count,
            usage_limit=coupon.usage_limit,
            per_user_limit=coupon.per_user_limit,
            valid_from=coupon.valid_from,
            valid_to=coupon.valid_to,
            is_active=coupon.is_active
        )
        await self._session.execute(stmt)
        return coupon_id

    async def increment_usage(self, code: str) -> bool:
        """Count one use unless the coupon ran out in the meantime"""
        usage = coupons_tbl.c.usage_count
        stmt = (
            update(coupons_tbl)
            .where(
                coupons_tbl.c.code == code.strip().upper(),
                usage < coupons_tbl.c.total_quantity,
                or_(coupons_tbl.c.usage_limit.is_(None), coupons_tbl.c.usage_limit == 0, usage < coupons_tbl.c.usage_limit)
            )
            .values(usage_count=usage + 1)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    def _to_domain(self, row) -> Coupon:
        return Coupon(
            id=row.id,
            code=row.code,
            discount_type=row.discount_type,
            discount_value=row.discount_value,
            min_order_amount=row.min_order_amount,
            total_quantity=row.total_quantity,
            usage_count=row.usage_count,
            usage_limit=row.usage_limit,
            per_user_limit=row.per_user_limit,
            valid_from=row.valid_from,
            valid_to=row.valid_to,
            is_active=row.is_active
        )


class SQLAlchemyShippingRateRepository(ShippingRateRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_rate_table(self) -> RateTable:
        result = await self._session.execute(select(shipping_rates_tbl))
        return RateTable(
            ShippingRate(country=row.country, state=row.state, city=row.city, price=row.price)
            for row in result.fetchall()
        )

    async def add(self, rate: ShippingRate) -> str:
        rate_id = str(uuid.uuid4())
        await self._session.execute(
            insert(shipping_rates_tbl).values(
                id=rate_id, country=rate.country, state=rate.state, city=rate.city, price=rate.price
            )
        )
        return rate_id


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self, event_type: str, event_data: dict, order_id: str, available_at: Optional[datetime] = None
    ) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # SQLAlchemy JSON column serialises it
            order_id=order_id,
            status="pending",
            attempts=0,
            next_attempt_at=available_at or datetime.now(timezone.utc)
        )
        await self._session.execute(stmt)
        return event_id

    async def get_by_id(self, event_id: str) -> Optional[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl).where(outbox_events_tbl.c.id == event_id)
        )
        row = result.fetchone()
        return self._to_dict(row) if row else None

    async def get_pending(self, now: datetime, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl)
            .where(
                outbox_events_tbl.c.status == "pending",
                outbox_events_tbl.c.next_attempt_at <= now
            )
            .order_by(outbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        return [self._to_dict(row) for row in result.fetchall()]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published", published_at=datetime.now(timezone.utc))
        )
        await self._session.execute(stmt)

    async def record_failure(
        self, event_id: str, error: str, next_attempt_at: datetime, give_up: bool, event_data: Optional[dict] = None
    ) -> None:
        values = {
            "status": "failed" if give_up else "pending",
            "attempts": outbox_events_tbl.c.attempts + 1,
            "last_error": error[:1000],
            "next_attempt_at": next_attempt_at
        }
        if event_data is not None:
            # handlers may record progress in the payload
            values["event_data"] = event_data
        stmt = update(outbox_events_tbl).where(outbox_events_tbl.c.id == event_id).values(**values)
        await self._session.execute(stmt)

    def _to_dict(self, row) -> dict:
        return {
            "id": row.id,
            "event_type": row.event_type,
            "event_data": row.event_data,
            "order_id": row.order_id,
            "status": row.status,
            "attempts": row.attempts,
            "last_error": row.last_error
        }


class SQLAlchemyInboxRepository(InboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str, idempotency_key: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(inbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,
            order_id=order_id,
            idempotency_key=idempotency_key,
            status="pending"
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(inbox_events_tbl)
            .where(inbox_events_tbl.c.status == "pending")
            .order_by(inbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id,
                "idempotency_key": row.idempotency_key
            }
            for row in rows
        ]

    async def mark_as_processed(self, event_id: str) -> None:
        stmt = (
            update(inbox_events_tbl)
            .where(inbox_events_tbl.c.id == event_id)
            .values(
                status="processed",
                processed_at=datetime.now(timezone.utc)
            )
        )
        await self._session.execute(stmt)

    async def mark_as_failed(self, event_id: str) -> None:
        stmt = (
            update(inbox_events_tbl)
            .where(inbox_events_tbl.c.id == event_id)
            .values(status="failed")
        )
        await self._session.execute(stmt)

    async def exists(self, idempotency_key: str) -> bool:
        result = await self._session.execute(
            select(inbox_events_tbl.c.id)
            .where(inbox_events_tbl.c.idempotency_key == idempotency_key)
        )
        return result.fetchone() is not None
