import asyncio
import logging

from order_engine.application.process_inbox import ProcessInboxEventsUseCase
from order_engine.config import settings
from order_engine.container import build_lifecycle
from order_engine.database import get_unit_of_work
from order_engine.infrastructure.kafka_producer import KafkaProducerClient

logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_EVENTS_TOPIC)


async def inbox_worker(poll_interval: float = 2.0):
    """Applies shipment events staged in the inbox"""
    logger.info("Inbox worker started")
    await kafka_producer.start()

    uow = get_unit_of_work()
    use_case = ProcessInboxEventsUseCase(unit_of_work=uow, lifecycle=build_lifecycle(uow, kafka_producer))
    try:
        while True:
            try:
                processed = await use_case(limit=10)
                if processed:
                    logger.info(f"Processed {processed} inbox events")
                await asyncio.sleep(poll_interval)
            except Exception as e:
                logger.error(f"Inbox worker error: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await kafka_producer.stop()


async def main():
    await inbox_worker()


if __name__ == "__main__":
    asyncio.run(main())
