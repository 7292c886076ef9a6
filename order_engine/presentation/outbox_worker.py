import asyncio
import logging

from order_engine.application.process_outbox import ProcessOutboxEventsUseCase
from order_engine.config import settings
from order_engine.container import build_dispatcher
from order_engine.database import get_unit_of_work
from order_engine.infrastructure.kafka_producer import KafkaProducerClient

logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_EVENTS_TOPIC)


async def outbox_worker(poll_interval: float = 3.0):
    """Retries side effects that were not completed when their transition committed"""
    logger.info("Outbox worker started")
    await kafka_producer.start()

    use_case = ProcessOutboxEventsUseCase(build_dispatcher(get_unit_of_work(), kafka_producer))
    try:
        while True:
            try:
                await use_case(limit=10)
                await asyncio.sleep(poll_interval)
            except Exception as e:
                logger.error(f"Outbox worker error: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await kafka_producer.stop()


async def main():
    await outbox_worker()


if __name__ == "__main__":
    asyncio.run(main())
