"""Side effects of order transitions, queued through the outbox.

A transition writes one outbox record per side effect in the same unit of
work as the order itself. ``SideEffectDispatcher`` runs the matching handler
and either marks the record published or schedules a retry with exponential
backoff. The lifecycle manager calls it once right after commit; the outbox
worker picks up whatever is still pending.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional
from pydantic import BaseModel, Field

from order_engine.application.interfaces import (
    EventPublisher, InvoiceRenderer, NotificationsService, ShippingProvider
)
from order_engine.domain.exceptions import (
    ConcurrentModificationError, DomainException, EventPublishError,
    NotificationServiceError, OrderNotFoundError, ShippingProviderError
)
from order_engine.domain.models import Order, OrderStatus, ShipmentInfo, utcnow

logger = logging.getLogger(__name__)

SHIPMENT_CREATE = "shipment.create"
SHIPMENT_CANCEL = "shipment.cancel"
EMAIL_CONFIRMATION = "email.confirmation"
EMAIL_CANCELLATION = "email.cancellation"
EMAIL_REFUND = "email.refund"
EMAIL_SHIPPING = "email.shipping"
ORDER_EVENT = "order.event"

EMAIL_EVENTS = (EMAIL_CONFIRMATION, EMAIL_CANCELLATION, EMAIL_REFUND, EMAIL_SHIPPING)

SAVE_RETRIES = 3


class SideEffectOutcome(BaseModel):
    event_id: str
    event_type: str
    ok: bool
    error: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


def order_payload(order: Order, **extra) -> dict:
    return {"order": order.model_dump(mode="json"), **extra}


def order_event(order: Order, previous_status: Optional[OrderStatus], performed_by: str) -> dict:
    return {
        "event": {
            "event_type": f"order.{order.order_status.value}",
            "order_id": order.order_id,
            "order_status": order.order_status.value,
            "previous_status": previous_status.value if previous_status else None,
            "payment_status": order.payment_status.value,
            "total": str(order.total),
            "total_commission": str(order.total_commission),
            "performed_by": performed_by,
            "occurred_at": order.updated_at.isoformat(),
        }
    }


def invoice_snapshot(order: Order) -> dict:
    """Order-shaped projection handed to the invoice renderer"""
    return {
        "order_id": order.order_id,
        "order_date": order.created_at.isoformat(),
        "customer_name": order.address.full_name,
        "customer_email": order.user_email,
        "address": order.address.model_dump(mode="json", exclude_none=True),
        "items": [
            {
                "name": item.name,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "total": str(item.total),
            }
            for item in order.items
        ],
        "payment_method": order.payment_method.value,
        "coupon_code": order.coupon_code,
        "subtotal": str(order.subtotal),
        "shipping": str(order.shipping),
        "discount": str(order.discount),
        "total": str(order.total),
    }


class CreateShipment:
    def __init__(self, unit_of_work, shipping: ShippingProvider):
        self._uow = unit_of_work
        self._shipping = shipping

    async def __call__(self, event_data: dict) -> list[str]:
        order_id = event_data["order_id"]
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        if order.shiprocket_shipment_id:
            logger.info(f"Shipment for order {order_id} already exists")
            return []
        if order.is_terminal():
            return [f"Order {order_id} is {order.order_status.value}, shipment not created"]

        if event_data.get("shipment"):
            shipment = ShipmentInfo.model_validate(event_data["shipment"])
            logger.info(f"Reusing shipment {shipment.shipment_id} booked earlier for order {order_id}")
        else:
            shipment = await self._shipping.create_shipment(order)
            if not shipment or not (shipment.provider_order_id or shipment.shipment_id):
                raise ShippingProviderError("Shipment created but response format is unexpected")
            # stored with the outbox record when the write-back below fails
            event_data["shipment"] = shipment.model_dump()

        for attempt in range(SAVE_RETRIES):
            async with self._uow() as uow:
                current = await uow.orders.get_by_id(order_id)
                updated = current.model_copy(update={
                    "shiprocket_order_id": shipment.provider_order_id,
                    "shiprocket_shipment_id": shipment.shipment_id,
                    "awb_code": shipment.awb_code,
                    "courier_name": shipment.courier_name,
                    "updated_at": utcnow(),
                })
                try:
                    await uow.orders.save(updated, expected_version=current.version)
                    await uow.commit()
                    break
                except ConcurrentModificationError:
                    await uow.rollback()
                    logger.warning(f"Order {order_id} changed while storing shipment (attempt {attempt + 1})")
        else:
            raise ConcurrentModificationError(order_id, order.version)

        logger.info(f"Shipment {shipment.shipment_id} created for order {order_id}")
        return []


class CancelShipment:
    def __init__(self, shipping: ShippingProvider):
        self._shipping = shipping

    async def __call__(self, event_data: dict) -> list[str]:
        await self._shipping.cancel_shipment([event_data["awb_code"]])
        logger.info(f"Shipment {event_data['awb_code']} cancelled")
        return []


class SendConfirmationEmail:
    def __init__(self, notifications: NotificationsService, invoices: Optional[InvoiceRenderer] = None):
        self._notifications = notifications
        self._invoices = invoices

    async def __call__(self, event_data: dict) -> list[str]:
        order = Order.model_validate(event_data["order"])
        warnings = []
        invoice = None
        if self._invoices is not None:
            try:
                invoice = await self._invoices.render_invoice(invoice_snapshot(order))
            except Exception as e:
                logger.warning(f"Invoice rendering failed for order {order.order_id}: {e}")
                warnings.append(f"Invoice rendering failed: {e}")

        if not await self._notifications.send_order_confirmation(order, invoice):
            raise NotificationServiceError("Confirmation email failed to send")
        return warnings


class SendCancellationEmail:
    def __init__(self, notifications: NotificationsService):
        self._notifications = notifications

    async def __call__(self, event_data: dict) -> list[str]:
        order = Order.model_validate(event_data["order"])
        if not await self._notifications.send_cancellation_email(order, event_data.get("reason") or ""):
            raise NotificationServiceError("Cancellation email failed to send")
        return []


class SendRefundEmail:
    def __init__(self, notifications: NotificationsService):
        self._notifications = notifications

    async def __call__(self, event_data: dict) -> list[str]:
        order = Order.model_validate(event_data["order"])
        if not await self._notifications.send_refund_email(order, event_data.get("reason") or ""):
            raise NotificationServiceError("Refund confirmation email failed to send")
        return []


class SendShippingEmail:
    def __init__(self, notifications: NotificationsService):
        self._notifications = notifications

    async def __call__(self, event_data: dict) -> list[str]:
        order = Order.model_validate(event_data["order"])
        if not order.awb_code or not order.courier_name:
            return ["No tracking details, shipping confirmation not sent"]
        if not await self._notifications.send_shipping_confirmation(order, order.awb_code, order.courier_name):
            raise NotificationServiceError("Shipping confirmation email failed to send")
        return []


class PublishOrderEvent:
    def __init__(self, publisher: EventPublisher):
        self._publisher = publisher

    async def __call__(self, event_data: dict) -> list[str]:
        event = event_data["event"]
        if not await self._publisher.publish(event):
            raise EventPublishError(f"Failed to publish {event['event_type']}")
        return []


def build_handlers(
    unit_of_work,
    notifications: NotificationsService,
    shipping: ShippingProvider,
    publisher: EventPublisher,
    invoices: Optional[InvoiceRenderer] = None,
) -> dict:
    return {
        SHIPMENT_CREATE: CreateShipment(unit_of_work, shipping),
        SHIPMENT_CANCEL: CancelShipment(shipping),
        EMAIL_CONFIRMATION: SendConfirmationEmail(notifications, invoices),
        EMAIL_CANCELLATION: SendCancellationEmail(notifications),
        EMAIL_REFUND: SendRefundEmail(notifications),
        EMAIL_SHIPPING: SendShippingEmail(notifications),
        ORDER_EVENT: PublishOrderEvent(publisher),
    }


class SideEffectDispatcher:
    def __init__(self, unit_of_work, handlers: dict, max_attempts: int = 5, retry_delay: float = 30.0):
        self._uow = unit_of_work
        self._handlers = handlers
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    def first_retry_at(self, now: datetime) -> datetime:
        """When the outbox worker may pick up a freshly queued event"""
        return now + timedelta(seconds=self._retry_delay)

    def next_attempt_at(self, attempts: int, now: datetime) -> datetime:
        return now + timedelta(seconds=self._retry_delay * 2 ** max(attempts - 1, 0))

    async def dispatch(self, event_ids: Iterable[str]) -> list[SideEffectOutcome]:
        outcomes = []
        for event_id in event_ids:
            async with self._uow() as uow:
                event = await uow.outbox.get_by_id(event_id)
            if not event or event["status"] != "pending":
                continue
            outcomes.append(await self._run(event))
        return outcomes

    async def dispatch_due(self, limit: int = 10) -> list[SideEffectOutcome]:
        async with self._uow() as uow:
            pending = await uow.outbox.get_pending(now=utcnow(), limit=limit)
        return [await self._run(event) for event in pending]

    async def _run(self, event: dict) -> SideEffectOutcome:
        event_id = event["id"]
        event_type = event["event_type"]
        handler = self._handlers.get(event_type)
        warnings: list[str] = []
        error = None

        if handler is None:
            error = f"No handler for {event_type}"
        else:
            try:
                warnings = await handler(event["event_data"]) or []
            except DomainException as e:
                error = str(e)
            except Exception as e:
                logger.error(f"Side effect {event_type} for order {event['order_id']} crashed: {e}", exc_info=True)
                error = f"{event_type} failed: {e}"

        async with self._uow() as uow:
            if error is None:
                await uow.outbox.mark_as_published(event_id)
            else:
                attempts = event["attempts"] + 1
                give_up = attempts >= self._max_attempts
                await uow.outbox.record_failure(
                    event_id, error, self.next_attempt_at(attempts, utcnow()), give_up, event_data=event["event_data"]
                )
                if give_up:
                    logger.error(f"Giving up on {event_type} {event_id} after {attempts} attempts: {error}")
                else:
                    logger.warning(f"{event_type} {event_id} failed (attempt {attempts}): {error}")
            await uow.commit()

        return SideEffectOutcome(
            event_id=event_id, event_type=event_type, ok=error is None, error=error, warnings=warnings
        )
