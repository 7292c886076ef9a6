import logging

from order_engine.application.lifecycle import OrderLifecycleManager
from order_engine.domain.exceptions import OrderNotFoundError

logger = logging.getLogger(__name__)

SHIPMENT_SHIPPED = "shipment.shipped"
SHIPMENT_DELIVERED = "shipment.delivered"
SHIPPING_PROVIDER_ACTOR = "shipping-provider"


class ProcessInboxEventsUseCase:
    def __init__(self, unit_of_work, lifecycle: OrderLifecycleManager):
        self._uow = unit_of_work
        self._lifecycle = lifecycle

    async def __call__(self, limit: int = 10) -> int:
        """Applies pending shipment events from the inbox. Returns the number processed."""
        async with self._uow() as uow:
            pending = await uow.inbox.get_pending(limit=limit)

        if not pending:
            return 0
        logger.info(f"Processing {len(pending)} inbox events")

        processed = 0
        for event in pending:
            event_id = event["id"]
            event_type = event["event_type"]
            order_id = event["order_id"]
            event_data = event["event_data"]
            ok = False
            try:
                if event_type == SHIPMENT_SHIPPED:
                    result = await self._lifecycle.ship(
                        order_id,
                        SHIPPING_PROVIDER_ACTOR,
                        awb_code=event_data.get("awb_code"),
                        courier_name=event_data.get("courier_name"),
                        details=event_data.get("status"),
                    )
                elif event_type == SHIPMENT_DELIVERED:
                    result = await self._lifecycle.deliver(
                        order_id, SHIPPING_PROVIDER_ACTOR, details=event_data.get("status")
                    )
                else:
                    logger.warning(f"Unknown inbox event type {event_type} ({event_id})")
                    result = None

                if result is not None:
                    # an event for an order already past that state is still consumed
                    ok = result.success or not result.applicable
                    if not ok:
                        logger.warning(f"Inbox event {event_id} rejected for order {order_id}: {result.errors}")
            except OrderNotFoundError:
                logger.error(f"Order {order_id} not found for inbox event {event_id}")
            except Exception as e:
                logger.error(f"Failed to process inbox event {event_id}: {e}", exc_info=True)

            async with self._uow() as uow:
                if ok:
                    await uow.inbox.mark_as_processed(event_id)
                    processed += 1
                else:
                    await uow.inbox.mark_as_failed(event_id)
                await uow.commit()

        return processed


class StoreShipmentEventUseCase:
    """Stores an incoming shipment event in the inbox once"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, event_data: dict) -> bool:
        event_type = event_data.get("event_type")
        order_id = event_data.get("order_id")
        if event_type not in (SHIPMENT_SHIPPED, SHIPMENT_DELIVERED) or not order_id:
            logger.warning(f"Ignoring shipment event {event_data}")
            return False

        idempotency_key = f"{event_type}_{order_id}"
        async with self._uow() as uow:
            if await uow.inbox.exists(idempotency_key):
                logger.info(f"Event {idempotency_key} already stored")
                return False
            await uow.inbox.create(
                event_type=event_type,
                event_data=event_data,
                order_id=order_id,
                idempotency_key=idempotency_key,
            )
            await uow.commit()

        logger.info(f"Stored {event_type} for order {order_id} in inbox")
        return True
