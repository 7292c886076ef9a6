import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from order_engine.config import settings
from order_engine.database import create_tables, get_engine
from order_engine.presentation.api import router, kafka_producer

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 1. Tables (Alembic owns migrations; this only covers a fresh database)
    try:
        await create_tables(get_engine())
        logger.info("Tables ready")
    except Exception as e:
        logger.error(f"Could not create tables: {e}")

    # 2. Order event producer; unpublished events stay in the outbox
    try:
        await kafka_producer.start()
    except Exception as e:
        logger.error(f"Kafka producer not started, order events will be retried by the outbox worker: {e}")

    yield

    logger.info("Shutting down...")
    await kafka_producer.stop()


app = FastAPI(
    title="Order Engine",
    description="Order lifecycle and settlement engine",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "healthy"}
