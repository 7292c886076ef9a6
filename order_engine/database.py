from functools import lru_cache
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from order_engine.config import settings
from order_engine.infrastructure.db_schema import metadata
from order_engine.infrastructure.unit_of_work import UnitOfWork


@lru_cache
def get_engine() -> AsyncEngine:
    return create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), expire_on_commit=False)


def get_unit_of_work() -> UnitOfWork:
    return UnitOfWork(get_session_factory())


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
