"""Commission owed on an order.

Commission is a settlement figure tracked next to the order; it is never
subtracted from the amount the customer pays.
"""
from decimal import Decimal
from typing import Iterable

from order_engine.domain.models import OrderItem
from order_engine.domain.money import ZERO, percent_of, round2, to_amount

DEFAULT_COMMISSION_RATE = Decimal("10")
DEFAULT_VENDOR = "default"


def item_commission(item: OrderItem, default_rate=DEFAULT_COMMISSION_RATE) -> Decimal:
    """Per-unit product commission when configured, else the default rate on the list price."""
    if item.commission_amount > ZERO:
        return item.commission_amount * item.quantity
    return round2(percent_of(item.price, default_rate)) * item.quantity


def calculate_order_commission(items: Iterable[OrderItem], default_rate=DEFAULT_COMMISSION_RATE) -> Decimal:
    return round2(sum((item_commission(item, default_rate) for item in items), ZERO))


def commission_breakdown_by_vendor(
    items: Iterable[OrderItem], default_rate=DEFAULT_COMMISSION_RATE
) -> dict[str, Decimal]:
    breakdown: dict[str, Decimal] = {}
    for item in items:
        vendor_id = item.vendor or DEFAULT_VENDOR
        breakdown[vendor_id] = breakdown.get(vendor_id, ZERO) + item_commission(item, default_rate)
    return {vendor_id: round2(amount) for vendor_id, amount in breakdown.items()}


def calculate_commission_rate(commission, subtotal) -> Decimal:
    """Commission as a percentage of the subtotal"""
    subtotal = to_amount(subtotal)
    if subtotal == ZERO:
        return ZERO
    return round2(to_amount(commission) / subtotal * 100)
