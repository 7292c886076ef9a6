from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List
from order_engine.domain.models import Coupon, Order, ShipmentInfo, StockLevel
from order_engine.domain.shipping import RateTable, ShippingRate


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def count_coupon_uses(self, user_id: str, coupon_code: str) -> int:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def save(self, order: Order, expected_version: int) -> Order:
        """Write the document if its stored version still equals ``expected_version``"""
        pass


class StockRepository(ABC):
    @abstractmethod
    async def get_stock(self, product_id: str) -> Optional[StockLevel]:
        pass

    @abstractmethod
    async def set_stock(self, product_id: str, quantity: int) -> None:
        pass

    @abstractmethod
    async def decrement_if_available(self, product_id: str, quantity: int) -> bool:
        """Atomic ``decrement if current >= quantity``; False when rejected"""
        pass

    @abstractmethod
    async def increment(self, product_id: str, quantity: int) -> bool:
        pass


class CouponRepository(ABC):
    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Coupon]:
        pass

    @abstractmethod
    async def create(self, coupon: Coupon) -> str:
        pass

    @abstractmethod
    async def increment_usage(self, code: str) -> bool:
        pass


class ShippingRateRepository(ABC):
    @abstractmethod
    async def get_rate_table(self) -> RateTable:
        pass

    @abstractmethod
    async def add(self, rate: ShippingRate) -> str:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(
        self, event_type: str, event_data: dict, order_id: str, available_at: Optional[datetime] = None
    ) -> str:
        pass

    @abstractmethod
    async def get_by_id(self, event_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def get_pending(self, now: datetime, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def record_failure(
        self, event_id: str, error: str, next_attempt_at: datetime, give_up: bool, event_data: Optional[dict] = None
    ) -> None:
        pass


class InboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str, idempotency_key: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_processed(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_as_failed(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def exists(self, idempotency_key: str) -> bool:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def stock(self) -> StockRepository:
        pass

    @property
    @abstractmethod
    def coupons(self) -> CouponRepository:
        pass

    @property
    @abstractmethod
    def shipping_rates(self) -> ShippingRateRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @property
    @abstractmethod
    def inbox(self) -> InboxRepository:
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class NotificationsService(ABC):
    @abstractmethod
    async def send_order_confirmation(self, order: Order, invoice: Optional[bytes]) -> bool:
        pass

    @abstractmethod
    async def send_cancellation_email(self, order: Order, reason: str) -> bool:
        pass

    @abstractmethod
    async def send_refund_email(self, order: Order, reason: str) -> bool:
        pass

    @abstractmethod
    async def send_shipping_confirmation(self, order: Order, awb_code: str, courier_name: str) -> bool:
        pass


class InvoiceRenderer(ABC):
    @abstractmethod
    async def render_invoice(self, snapshot: dict) -> bytes:
        pass


class ShippingProvider(ABC):
    @abstractmethod
    async def create_shipment(self, order: Order) -> Optional[ShipmentInfo]:
        pass

    @abstractmethod
    async def track_shipment(self, shipment_id: str) -> dict:
        pass

    @abstractmethod
    async def cancel_shipment(self, awb_codes: List[str]) -> dict:
        pass


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event: dict) -> bool:
        pass
