from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.infrastructure.repositories import (
    SQLAlchemyOrderRepository,
    SQLAlchemyStockRepository,
    SQLAlchemyCouponRepository,
    SQLAlchemyShippingRateRepository,
    SQLAlchemyOutboxRepository,
    SQLAlchemyInboxRepository
)


class UnitOfWork:
    """One session, one transaction: the order write and its stock writes commit together."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            try:
                uow_impl = _UnitOfWorkImpl(session)
                yield uow_impl
                # anything not committed is discarded
                await session.rollback()
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.orders = SQLAlchemyOrderRepository(session)
        self.stock = SQLAlchemyStockRepository(session)
        self.coupons = SQLAlchemyCouponRepository(session)
        self.shipping_rates = SQLAlchemyShippingRateRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)
        self.inbox = SQLAlchemyInboxRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
