class DomainException(Exception):
    pass


class OrderNotFoundError(DomainException):
    pass


class ShippingProviderError(DomainException):
    pass


class NotificationServiceError(DomainException):
    pass


class InvoiceRenderingError(DomainException):
    pass


class EventPublishError(DomainException):
    pass


class InvalidCouponError(DomainException):
    def __init__(self, code: str | None, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"Coupon cannot be applied: {reason}")


class ConcurrentModificationError(DomainException):
    def __init__(self, order_id: str, expected_version: int):
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(f"Order {order_id} was modified concurrently (expected version {expected_version})")
