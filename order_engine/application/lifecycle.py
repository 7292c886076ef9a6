"""Order lifecycle: confirm, cancel, refund, ship and deliver.

Every transition runs in a single unit of work: the stock mutation, the
version-checked order write, its action history entry and the outbox records
for its side effects are committed together or not at all. Side effects are
then attempted once; their failures come back as warnings and never undo the
committed transition.
"""
import logging
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from order_engine.application import side_effects
from order_engine.application.interfaces import ShippingProvider
from order_engine.application.side_effects import SideEffectDispatcher, order_event, order_payload
from order_engine.application.stock import StockReservationService, quantities_by_product
from order_engine.domain import history
from order_engine.domain.commission import DEFAULT_COMMISSION_RATE, calculate_order_commission
from order_engine.domain.exceptions import ConcurrentModificationError, OrderNotFoundError
from order_engine.domain.models import (
    Order, OrderStatus, PaymentStatus, StockLevel, StockShortage, utcnow
)
from order_engine.domain.pricing import totals_reconcile

logger = logging.getLogger(__name__)


class TransitionResult(BaseModel):
    success: bool = False
    applicable: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    order: Optional[Order] = None
    stock_reduced: bool = False
    stock_restored: bool = False
    shipment_created: bool = False
    email_sent: bool = False
    event_published: bool = False
    insufficient_stock: list[StockShortage] = Field(default_factory=list)


class OrderStatusReport(BaseModel):
    order: Order
    stock_status: list[StockLevel] = Field(default_factory=list)
    tracking_info: Optional[dict] = None
    warnings: list[str] = Field(default_factory=list)


def _describe_shortages(shortages: list[StockShortage]) -> str:
    return ", ".join(f"{s.product_id} (need {s.requested}, have {s.available})" for s in shortages)


def _advance(
    order: Order,
    new_status: OrderStatus,
    action: str,
    actor: str,
    now: datetime,
    details: Optional[str] = None,
    reason: Optional[str] = None,
    **updates,
) -> Order:
    updated = order.model_copy(update={"order_status": new_status, "updated_at": now, **updates})
    entry = history.make_entry(action, order.order_status, new_status, actor, details=details, reason=reason, now=now)
    return history.append(updated, entry)


class OrderLifecycleManager:
    def __init__(
        self,
        unit_of_work,
        dispatcher: SideEffectDispatcher,
        default_commission_rate=DEFAULT_COMMISSION_RATE,
        shipping: Optional[ShippingProvider] = None,
    ):
        self._uow = unit_of_work
        self._dispatcher = dispatcher
        self._commission_rate = default_commission_rate
        self._shipping = shipping

    async def confirm(self, order_id: str, actor: str, details: Optional[str] = None) -> TransitionResult:
        result = TransitionResult()
        logger.info(f"Confirming order {order_id} by {actor}")

        async with self._uow() as uow:
            order = await self._load(uow, order_id)
            if not order.can_be_confirmed():
                return self._reject(result, order, "confirm", already=OrderStatus.CONFIRMED)

            stock = StockReservationService(uow.stock)
            check = await stock.check_order_stock(order)
            if not check.can_fulfill:
                result.order = order
                result.insufficient_stock = check.insufficient_stock
                if check.insufficient_stock:
                    result.errors.append(
                        f"Cannot confirm order - insufficient stock for: {_describe_shortages(check.insufficient_stock)}"
                    )
                if check.errors:
                    result.errors.append(f"Stock check errors: {', '.join(f'{e.product_id}: {e.error}' for e in check.errors)}")
                logger.info(f"Order {order_id} not confirmed: {result.errors}")
                return result

            reduction = await stock.reduce_stock(order.items)
            if not reduction.success:
                # another order took the stock between check and decrement
                await uow.rollback()
                result.order = order
                result.insufficient_stock = reduction.insufficient_stock
                if reduction.insufficient_stock:
                    result.errors.append(
                        f"Insufficient stock for: {_describe_shortages(reduction.insufficient_stock)}"
                    )
                if reduction.errors:
                    result.errors.append(
                        f"Stock reduction failed: {', '.join(f'{e.product_id}: {e.error}' for e in reduction.errors)}"
                    )
                return result

            commission = calculate_order_commission(order.items, self._commission_rate)
            updated = _advance(
                order, OrderStatus.CONFIRMED, history.ORDER_CONFIRMED, actor, utcnow(),
                details=details, commission=commission, total_commission=commission,
            )
            event_ids = await self._commit(uow, order, updated, result, [
                (side_effects.SHIPMENT_CREATE, {"order_id": order_id}),
                (side_effects.EMAIL_CONFIRMATION, order_payload(updated)),
                (side_effects.ORDER_EVENT, order_event(updated, order.order_status, actor)),
            ])
            if event_ids is None:
                return result

        result.stock_reduced = True
        if not totals_reconcile(result.order):
            logger.warning(f"Order {order_id} totals do not reconcile: {result.order.total}")
            result.warnings.append("Order totals do not reconcile with subtotal, shipping and discount")
        await self._run_side_effects(event_ids, result)
        return result

    async def cancel(self, order_id: str, actor: str, reason: str) -> TransitionResult:
        result = TransitionResult()
        logger.info(f"Cancelling order {order_id} by {actor}: {reason}")

        async with self._uow() as uow:
            order = await self._load(uow, order_id)
            if not order.can_be_cancelled():
                return self._reject(result, order, "cancel", already=order.order_status)

            restore = None
            if order.has_reserved_stock():
                restore = await StockReservationService(uow.stock).restore_stock(order.items)

            now = utcnow()
            updated = _advance(
                order, OrderStatus.CANCELLED, history.ORDER_CANCELLED, actor, now,
                reason=reason, cancellation_reason=reason, cancelled_at=now,
            )
            intents = []
            if order.awb_code:
                intents.append((side_effects.SHIPMENT_CANCEL, {"order_id": order_id, "awb_code": order.awb_code}))
            intents.append((side_effects.EMAIL_CANCELLATION, order_payload(updated, reason=reason)))
            intents.append((side_effects.ORDER_EVENT, order_event(updated, order.order_status, actor)))
            event_ids = await self._commit(uow, order, updated, result, intents)
            if event_ids is None:
                return result

        self._record_restore(restore, result)
        await self._run_side_effects(event_ids, result)
        return result

    async def refund(self, order_id: str, actor: str, reason: str) -> TransitionResult:
        result = TransitionResult()
        logger.info(f"Refunding order {order_id} by {actor}: {reason}")

        async with self._uow() as uow:
            order = await self._load(uow, order_id)
            if not order.can_be_refunded():
                return self._reject(result, order, "refund", already=OrderStatus.REFUNDED)

            restore = await StockReservationService(uow.stock).restore_stock(order.items)

            now = utcnow()
            payment_status = order.payment_status
            if payment_status == PaymentStatus.COMPLETED:
                # the refund itself is carried by order_status and refunded_at
                payment_status = PaymentStatus.FAILED
            updated = _advance(
                order, OrderStatus.REFUNDED, history.ORDER_REFUNDED, actor, now,
                reason=reason, refund_reason=reason, refunded_at=now, payment_status=payment_status,
            )
            event_ids = await self._commit(uow, order, updated, result, [
                (side_effects.EMAIL_REFUND, order_payload(updated, reason=reason)),
                (side_effects.ORDER_EVENT, order_event(updated, order.order_status, actor)),
            ])
            if event_ids is None:
                return result

        self._record_restore(restore, result)
        await self._run_side_effects(event_ids, result)
        return result

    async def ship(
        self,
        order_id: str,
        actor: str,
        awb_code: Optional[str] = None,
        courier_name: Optional[str] = None,
        details: Optional[str] = None,
    ) -> TransitionResult:
        result = TransitionResult()

        async with self._uow() as uow:
            order = await self._load(uow, order_id)
            if not order.can_be_shipped():
                return self._reject(result, order, "ship", already=OrderStatus.SHIPPED)

            updated = _advance(
                order, OrderStatus.SHIPPED, history.ORDER_SHIPPED, actor, utcnow(), details=details,
                awb_code=awb_code or order.awb_code, courier_name=courier_name or order.courier_name,
            )
            event_ids = await self._commit(uow, order, updated, result, [
                (side_effects.EMAIL_SHIPPING, order_payload(updated)),
                (side_effects.ORDER_EVENT, order_event(updated, order.order_status, actor)),
            ])
            if event_ids is None:
                return result

        await self._run_side_effects(event_ids, result)
        return result

    async def deliver(self, order_id: str, actor: str, details: Optional[str] = None) -> TransitionResult:
        result = TransitionResult()

        async with self._uow() as uow:
            order = await self._load(uow, order_id)
            if not order.can_be_delivered():
                return self._reject(result, order, "deliver", already=OrderStatus.DELIVERED)

            updated = _advance(order, OrderStatus.DELIVERED, history.ORDER_DELIVERED, actor, utcnow(), details=details)
            event_ids = await self._commit(uow, order, updated, result, [
                (side_effects.ORDER_EVENT, order_event(updated, order.order_status, actor)),
            ])
            if event_ids is None:
                return result

        await self._run_side_effects(event_ids, result)
        return result

    async def get_order_status(self, order_id: str) -> OrderStatusReport:
        async with self._uow() as uow:
            order = await self._load(uow, order_id)
            stock = StockReservationService(uow.stock)
            levels = [await stock.get_product_stock(product_id) for product_id in quantities_by_product(order.items)]

        report = OrderStatusReport(order=order, stock_status=levels)
        if order.awb_code and self._shipping is not None:
            try:
                report.tracking_info = await self._shipping.track_shipment(
                    order.shiprocket_shipment_id or order.awb_code
                )
            except Exception as e:
                logger.warning(f"Tracking unavailable for order {order_id}: {e}")
                report.warnings.append(f"Tracking unavailable: {e}")
        return report

    async def _load(self, uow, order_id: str) -> Order:
        order = await uow.orders.get_by_id(order_id)
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def _reject(self, result: TransitionResult, order: Order, transition: str, already: OrderStatus) -> TransitionResult:
        result.order = order
        if order.order_status == already or (transition == "cancel" and order.is_terminal()):
            result.applicable = False
            result.warnings.append(f"Order {order.order_id} is already {order.order_status.value}, nothing to {transition}")
            logger.info(f"{transition} not applicable to order {order.order_id} ({order.order_status.value})")
        else:
            result.errors.append(f"Cannot {transition} order {order.order_id} in status {order.order_status.value}")
            logger.warning(f"Rejected {transition} of order {order.order_id} ({order.order_status.value})")
        return result

    async def _commit(self, uow, original: Order, updated: Order, result: TransitionResult, intents) -> Optional[list[str]]:
        try:
            saved = await uow.orders.save(updated, expected_version=original.version)
        except ConcurrentModificationError as e:
            await uow.rollback()
            result.order = original
            result.errors.append(f"{e}, reload the order and retry")
            logger.warning(str(e))
            return None

        available_at = self._dispatcher.first_retry_at(saved.updated_at)
        event_ids = []
        for event_type, event_data in intents:
            event_ids.append(await uow.outbox.create(event_type, event_data, saved.order_id, available_at=available_at))
        await uow.commit()

        result.success = True
        result.order = saved
        logger.info(f"Order {saved.order_id}: {original.order_status.value} -> {saved.order_status.value}")
        return event_ids

    def _record_restore(self, restore, result: TransitionResult) -> None:
        if restore is None:
            return
        result.stock_restored = restore.success
        if restore.errors:
            result.warnings.append(
                f"Stock restoration failed: {', '.join(f'{e.product_id}: {e.error}' for e in restore.errors)}"
            )

    async def _run_side_effects(self, event_ids: list[str], result: TransitionResult) -> None:
        try:
            outcomes = await self._dispatcher.dispatch(event_ids)
        except Exception as e:
            logger.error(f"Side effects for order {result.order.order_id} left to the outbox worker: {e}", exc_info=True)
            result.warnings.append(f"Side effects queued for retry: {e}")
            return

        for outcome in outcomes:
            result.warnings.extend(outcome.warnings)
            if outcome.event_type == side_effects.SHIPMENT_CREATE:
                result.shipment_created = outcome.ok
            elif outcome.event_type in side_effects.EMAIL_EVENTS:
                result.email_sent = outcome.ok
            elif outcome.event_type == side_effects.ORDER_EVENT:
                result.event_published = outcome.ok
            if not outcome.ok:
                result.warnings.append(outcome.error)

        if result.shipment_created:
            async with self._uow() as uow:
                result.order = await uow.orders.get_by_id(result.order.order_id)
