"""Append-only action history kept on every order.

The history is the only persisted record of why an order changed status, so
entries are never edited, reordered or dropped.
"""
from datetime import datetime
from typing import Optional

from order_engine.domain.models import ActionEntry, Order, OrderStatus, utcnow

ORDER_CREATED = "order_created"
ORDER_CONFIRMED = "order_confirmed"
ORDER_SHIPPED = "order_shipped"
ORDER_DELIVERED = "order_delivered"
ORDER_CANCELLED = "order_cancelled"
ORDER_REFUNDED = "order_refunded"

SYSTEM_ACTOR = "system"

CANCELLATION_REASONS = [
    "Customer requested cancellation",
    "Payment failed",
    "Out of stock",
    "Duplicate order",
    "Fraud detection",
    "Shipping address invalid",
    "Customer not reachable",
    "Other",
]

STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING: "Waiting for confirmation",
    OrderStatus.CONFIRMED: "Confirmed and ready for processing",
    OrderStatus.SHIPPED: "On the way to customer",
    OrderStatus.DELIVERED: "Successfully delivered",
    OrderStatus.CANCELLED: "Order has been cancelled",
    OrderStatus.REFUNDED: "Order has been refunded",
}


def make_entry(
    action: str,
    previous_status: Optional[OrderStatus],
    new_status: OrderStatus,
    performed_by: str = SYSTEM_ACTOR,
    details: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ActionEntry:
    return ActionEntry(
        action=action,
        timestamp=now or utcnow(),
        performed_by=performed_by or SYSTEM_ACTOR,
        previous_status=previous_status,
        new_status=new_status,
        details=details,
        reason=reason,
    )


def append(order: Order, entry: ActionEntry) -> Order:
    """Return a copy of ``order`` with ``entry`` at the end of its history"""
    return order.model_copy(update={"action_history": [*order.action_history, entry]})


def latest(order: Order) -> Optional[ActionEntry]:
    return order.action_history[-1] if order.action_history else None


def by_type(order: Order, action: str) -> list[ActionEntry]:
    return [entry for entry in order.action_history if entry.action == action]


def status_description(status: OrderStatus) -> str:
    return STATUS_DESCRIPTIONS.get(status, status.value)
