from functools import lru_cache

from order_engine.application.interfaces import EventPublisher
from order_engine.application.lifecycle import OrderLifecycleManager
from order_engine.application.side_effects import SideEffectDispatcher, build_handlers
from order_engine.config import settings
from order_engine.domain.pricing import PricingConfig
from order_engine.infrastructure.http_clients import HTTPInvoiceClient, HTTPNotificationsClient, ShiprocketClient


def pricing_config() -> PricingConfig:
    return PricingConfig(
        free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
        flat_shipping_fee=settings.FLAT_SHIPPING_FEE,
        default_commission_rate=settings.DEFAULT_COMMISSION_RATE,
    )


@lru_cache
def shipping_client() -> ShiprocketClient:
    # shared so the login token is reused
    return ShiprocketClient(
        settings.SHIPROCKET_BASE_URL,
        settings.SHIPROCKET_EMAIL,
        settings.SHIPROCKET_PASSWORD,
        settings.SHIPROCKET_PICKUP_LOCATION,
    )


def build_dispatcher(unit_of_work, publisher: EventPublisher) -> SideEffectDispatcher:
    handlers = build_handlers(
        unit_of_work,
        notifications=HTTPNotificationsClient(settings.NOTIFICATIONS_BASE_URL, settings.API_TOKEN),
        shipping=shipping_client(),
        publisher=publisher,
        invoices=HTTPInvoiceClient(settings.INVOICE_BASE_URL, settings.API_TOKEN),
    )
    return SideEffectDispatcher(
        unit_of_work,
        handlers,
        max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
        retry_delay=settings.OUTBOX_RETRY_DELAY,
    )


def build_lifecycle(unit_of_work, publisher: EventPublisher) -> OrderLifecycleManager:
    return OrderLifecycleManager(
        unit_of_work,
        build_dispatcher(unit_of_work, publisher),
        default_commission_rate=settings.DEFAULT_COMMISSION_RATE,
        shipping=shipping_client(),
    )
