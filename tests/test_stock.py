from decimal import Decimal

import pytest

from order_engine.application.stock import StockReservationService, quantities_by_product
from order_engine.domain.models import OrderItem


def line(product_id: str, quantity: int) -> OrderItem:
    return OrderItem(id=product_id, name=product_id, price=Decimal("100"), quantity=quantity)


def test_quantities_are_summed_per_product():
    assert quantities_by_product([line("p1", 2), line("p2", 1), line("p1", 3)]) == {"p1": 5, "p2": 1}


@pytest.mark.asyncio
async def test_check_reports_every_shortage(uow, make_order, seed_stock):
    await seed_stock(p1=4, p2=0)
    order = make_order(items=[line("p1", 2), line("p1", 3), line("p2", 1), line("p3", 1)])

    async with uow() as u:
        result = await StockReservationService(u.stock).check_order_stock(order)

    assert not result.can_fulfill
    assert [(s.product_id, s.requested, s.available) for s in result.insufficient_stock] == [
        ("p1", 5, 4), ("p2", 1, 0)
    ]
    assert [e.product_id for e in result.errors] == ["p3"]


@pytest.mark.asyncio
async def test_reduce_then_restore_round_trips(uow, seed_stock, stock_of):
    await seed_stock(p1=5, p2=3)
    items = [line("p1", 2), line("p2", 3)]

    async with uow() as u:
        reduced = await StockReservationService(u.stock).reduce_stock(items)
        await u.commit()
    assert reduced.success
    assert await stock_of("p1") == 3
    assert await stock_of("p2") == 0

    async with uow() as u:
        restored = await StockReservationService(u.stock).restore_stock(items)
        await u.commit()
    assert restored.success
    assert await stock_of("p1") == 5
    assert await stock_of("p2") == 3


@pytest.mark.asyncio
async def test_reduce_refuses_to_go_negative(uow, seed_stock, stock_of):
    await seed_stock(p1=3)

    async with uow() as u:
        result = await StockReservationService(u.stock).reduce_stock([line("p1", 5)])

    assert not result.success
    assert result.insufficient_stock[0].available == 3
    assert await stock_of("p1") == 3


@pytest.mark.asyncio
async def test_restore_of_missing_product_is_reported(uow, seed_stock, stock_of):
    await seed_stock(p1=1)

    async with uow() as u:
        result = await StockReservationService(u.stock).restore_stock([line("p1", 1), line("gone", 2)])
        await u.commit()

    assert not result.success
    assert result.updated_products == ["p1"]
    assert result.errors[0].product_id == "gone"
    assert await stock_of("p1") == 2


@pytest.mark.asyncio
async def test_stock_status_follows_quantity(uow, seed_stock):
    await seed_stock(p1=2)

    async with uow() as u:
        service = StockReservationService(u.stock)
        await service.reduce_stock([line("p1", 2)])
        assert (await service.get_product_stock("p1")).status == "out_of_stock"
        await service.restore_stock([line("p1", 1)])
        assert (await service.get_product_stock("p1")).status == "in_stock"


@pytest.mark.asyncio
async def test_unknown_product_level(uow):
    async with uow() as u:
        level = await StockReservationService(u.stock).get_product_stock("nope")
    assert not level.exists
    assert level.status == "not_found"
