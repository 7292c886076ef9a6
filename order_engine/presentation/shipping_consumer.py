import asyncio
import logging

from order_engine.application.process_inbox import StoreShipmentEventUseCase
from order_engine.config import settings
from order_engine.database import get_unit_of_work
from order_engine.infrastructure.kafka_consumer import KafkaConsumerClient

logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def shipping_consumer():
    """Consumer for shipment status events from the shipping provider bridge"""
    logger.info("Shipping consumer started")

    store_event = StoreShipmentEventUseCase(get_unit_of_work())
    consumer = KafkaConsumerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.SHIPMENT_EVENTS_TOPIC)
    await consumer.start()

    try:
        await consumer.consume(store_event)
    finally:
        await consumer.stop()


async def main():
    await shipping_consumer()


if __name__ == "__main__":
    asyncio.run(main())
