import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Database
    POSTGRES_CONNECTION_STRING: str = os.getenv("POSTGRES_CONNECTION_STRING", "")

    # API
    API_TOKEN: str = os.getenv("API_TOKEN", "")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Services
    NOTIFICATIONS_BASE_URL: str = os.getenv("NOTIFICATIONS_BASE_URL", "http://localhost:3004")
    INVOICE_BASE_URL: str = os.getenv("INVOICE_BASE_URL", "http://localhost:3004")

    # Shiprocket
    SHIPROCKET_BASE_URL: str = os.getenv("SHIPROCKET_BASE_URL", "https://apiv2.shiprocket.in/v1/external")
    SHIPROCKET_EMAIL: str = os.getenv("SHIPROCKET_EMAIL", os.getenv("SHIPROCKET_USERNAME", ""))
    SHIPROCKET_PASSWORD: str = os.getenv("SHIPROCKET_PASSWORD", "")
    SHIPROCKET_PICKUP_LOCATION: str = os.getenv("SHIPROCKET_PICKUP_LOCATION", "Home")

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    ORDER_EVENTS_TOPIC: str = os.getenv("ORDER_EVENTS_TOPIC", "admin-orders.events")
    SHIPMENT_EVENTS_TOPIC: str = os.getenv("SHIPMENT_EVENTS_TOPIC", "admin-shipment.events")

    # Pricing
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "1000"))
    FLAT_SHIPPING_FEE: Decimal = Decimal(os.getenv("FLAT_SHIPPING_FEE", "100"))
    DEFAULT_COMMISSION_RATE: Decimal = Decimal(os.getenv("DEFAULT_COMMISSION_RATE", "10"))

    # Outbox
    OUTBOX_MAX_ATTEMPTS: int = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
    OUTBOX_RETRY_DELAY: float = float(os.getenv("OUTBOX_RETRY_DELAY", "30"))

    @property
    def DATABASE_URL(self) -> str:
        """Async URL used by the application"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql+asyncpg://")

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Sync URL used by Alembic"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql://")


settings = Settings()
