import logging
from collections import Counter
from typing import Iterable

from order_engine.application.interfaces import StockRepository
from order_engine.domain.models import (
    Order, OrderItem, StockCheckResult, StockError, StockLevel, StockShortage, StockUpdateResult
)

logger = logging.getLogger(__name__)


def quantities_by_product(items: Iterable[OrderItem]) -> dict[str, int]:
    """Requested quantity per distinct product, summed over repeated lines"""
    totals: Counter = Counter()
    for item in items:
        totals[item.id] += item.quantity
    return dict(totals)


class StockReservationService:
    """Reads and adjusts product stock counters for order transitions.

    Business failures are returned as results, never raised, so the caller
    can report every short product at once.
    """

    def __init__(self, stock: StockRepository):
        self._stock = stock

    async def check_order_stock(self, order: Order) -> StockCheckResult:
        result = StockCheckResult()
        for product_id, requested in quantities_by_product(order.items).items():
            level = await self._stock.get_stock(product_id)
            if level is None:
                result.errors.append(StockError(product_id=product_id, error="Product not found"))
                result.can_fulfill = False
            elif level.stock < requested:
                result.insufficient_stock.append(
                    StockShortage(product_id=product_id, requested=requested, available=level.stock)
                )
                result.can_fulfill = False
        return result

    async def reduce_stock(self, items: Iterable[OrderItem]) -> StockUpdateResult:
        result = StockUpdateResult()
        for product_id, quantity in quantities_by_product(items).items():
            if await self._stock.decrement_if_available(product_id, quantity):
                result.updated_products.append(product_id)
                continue

            result.success = False
            level = await self._stock.get_stock(product_id)
            if level is None:
                result.errors.append(StockError(product_id=product_id, error="Product not found"))
            else:
                result.insufficient_stock.append(
                    StockShortage(product_id=product_id, requested=quantity, available=level.stock)
                )
        if result.success:
            logger.info(f"Stock reduced for {len(result.updated_products)} products")
        return result

    async def restore_stock(self, items: Iterable[OrderItem]) -> StockUpdateResult:
        result = StockUpdateResult()
        for product_id, quantity in quantities_by_product(items).items():
            if await self._stock.increment(product_id, quantity):
                result.updated_products.append(product_id)
            else:
                logger.warning(f"Cannot restore {quantity} units of missing product {product_id}")
                result.errors.append(StockError(product_id=product_id, error="Product not found"))
                result.success = False
        return result

    async def get_product_stock(self, product_id: str) -> StockLevel:
        level = await self._stock.get_stock(product_id)
        if level is None:
            return StockLevel(product_id=product_id, stock=0, status="not_found", exists=False)
        return level
