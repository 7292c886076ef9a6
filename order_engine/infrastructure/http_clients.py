import asyncio
import base64
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx

from order_engine.application.interfaces import InvoiceRenderer, NotificationsService, ShippingProvider
from order_engine.domain.exceptions import InvoiceRenderingError, ShippingProviderError
from order_engine.domain.models import Order, PaymentMethod, ShipmentInfo

logger = logging.getLogger(__name__)

DEFAULT_PHONE = "9999999999"
DEFAULT_PINCODE = "682001"
DEFAULT_EMAIL = "noreply@example.com"
PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class HTTPNotificationsClient(NotificationsService):
    def __init__(
        self,
        base_url: str,
        api_token: str,
        max_retries: int = 1,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url
        self._api_token = api_token
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._transport = transport

    async def send_order_confirmation(self, order: Order, invoice: Optional[bytes]) -> bool:
        attachments = []
        if invoice:
            attachments.append({
                "filename": f"invoice-{order.order_id}.pdf",
                "content": base64.b64encode(invoice).decode(),
            })
        return await self._send("order-confirmation", order, attachments=attachments)

    async def send_cancellation_email(self, order: Order, reason: str) -> bool:
        return await self._send("order-cancellation", order, reason=reason)

    async def send_refund_email(self, order: Order, reason: str) -> bool:
        return await self._send("refund-confirmation", order, reason=reason)

    async def send_shipping_confirmation(self, order: Order, awb_code: str, courier_name: str) -> bool:
        return await self._send("shipping-confirmation", order, awbCode=awb_code, courierName=courier_name)

    async def _send(self, email_type: str, order: Order, attachments: Optional[list] = None, **extra) -> bool:
        if not order.user_email:
            logger.warning(f"Order {order.order_id} has no customer email, {email_type} not sent")
            return False

        payload = {
            "type": email_type,
            "to": order.user_email,
            "data": {
                **order.model_dump(mode="json", exclude={"action_history"}),
                "customerName": order.address.full_name,
                **extra,
            },
            "attachments": attachments or [],
        }

        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    response = await client.post(
                        f"{self._base_url}/api/email",
                        json=payload,
                        headers={"X-API-Key": self._api_token},
                        timeout=10.0
                    )

                    if response.status_code in (200, 201):
                        body = response.json() if response.content else {}
                        if body.get("success", True):
                            logger.info(f"{email_type} email sent for order {order.order_id} (attempt {attempt + 1})")
                            return True
                        logger.warning(f"Email API rejected {email_type}: {body.get('error')}")
                    else:
                        logger.warning(f"Email API returned {response.status_code} for {email_type}")

            except Exception as e:
                logger.warning(f"Email send failed (attempt {attempt + 1}/{self._max_retries}): {e}")

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_delay)

        logger.error(f"{email_type} email for order {order.order_id} not sent after {self._max_retries} attempts")
        return False


class HTTPInvoiceClient(InvoiceRenderer):
    def __init__(self, base_url: str, api_token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url
        self._api_token = api_token
        self._transport = transport

    async def render_invoice(self, snapshot: dict) -> bytes:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/api/invoices",
                    json=snapshot,
                    headers={"X-API-Key": self._api_token},
                    timeout=30.0
                )
        except httpx.RequestError as e:
            logger.error(f"Invoice service connection error: {e}")
            raise InvoiceRenderingError(f"Invoice service unavailable: {str(e)}")

        if response.status_code != 200:
            raise InvoiceRenderingError(f"Invoice service error: {response.status_code}")
        return response.content


def validate_phone(phone: Optional[str]) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    elif len(digits) > 10:
        digits = digits[-10:]
    return digits if PHONE_PATTERN.match(digits) else DEFAULT_PHONE


def validate_pincode(pincode: Optional[str]) -> str:
    digits = re.sub(r"\D", "", pincode or "")
    return digits if len(digits) == 6 else DEFAULT_PINCODE


def validate_email(email: Optional[str]) -> str:
    return email if email and EMAIL_PATTERN.match(email) else DEFAULT_EMAIL


def build_shipment_payload(order: Order, pickup_location: str = "Home") -> dict:
    """Shiprocket adhoc order body for ``order``"""
    address = order.address
    order_items = []
    for item in order.items:
        selling_price = item.unit_price
        if selling_price <= 0:
            raise ShippingProviderError(f"Invalid selling price for item: {item.name}")
        order_items.append({
            "name": (item.name or "Product")[:50],
            "sku": item.id[:50],
            "units": item.quantity,
            "selling_price": float(selling_price),
            "discount": float(item.price - selling_price),
            "tax": 0,
            "hsn": 441122,
        })

    return {
        "order_id": order.order_id,
        "order_date": order.created_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
        "pickup_location": pickup_location,
        "billing_customer_name": ((address.first_name or address.address_name or "Customer").strip() or "Customer")[:50],
        "billing_last_name": ((address.last_name or "Name").strip() or "Name")[:50],
        "billing_address": (address.street_address or "Address Required")[:120],
        "billing_city": address.city[:50],
        "billing_pincode": validate_pincode(address.postcode),
        "billing_state": address.state[:50],
        "billing_country": address.country[:50],
        "billing_email": validate_email(order.user_email),
        "billing_phone": validate_phone(address.phone),
        "shipping_is_billing": True,
        "order_items": order_items,
        "payment_method": "Prepaid" if order.payment_method == PaymentMethod.RAZORPAY else "COD",
        "shipping_charges": float(order.shipping),
        "giftwrap_charges": 0,
        "transaction_charges": 0,
        "total_discount": float(order.discount),
        "sub_total": float(order.subtotal),
        "length": 10,
        "breadth": 10,
        "height": 10,
        "weight": 0.5,
    }


class ShiprocketClient(ShippingProvider):
    TOKEN_TTL = timedelta(days=9)

    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        pickup_location: str = "Home",
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url
        self._email = email
        self._password = password
        self._pickup_location = pickup_location
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

    async def _authenticate(self, client: httpx.AsyncClient) -> str:
        now = datetime.now(timezone.utc)
        if self._token and self._token_expiry and now < self._token_expiry:
            return self._token

        response = await client.post(
            f"{self._base_url}/auth/login",
            json={"email": self._email, "password": self._password},
            timeout=10.0
        )
        if response.status_code != 200:
            raise ShippingProviderError(f"Shiprocket authentication failed: {response.status_code}")
        token = response.json().get("token")
        if not token:
            raise ShippingProviderError("No token received from Shiprocket authentication")

        self._token = token
        self._token_expiry = now + self.TOKEN_TTL
        return token

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                token = await self._authenticate(client)
                response = await client.request(
                    method,
                    f"{self._base_url}{path}",
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=30.0,
                    **kwargs
                )
        except httpx.RequestError as e:
            logger.error(f"Shiprocket connection error: {e}")
            raise ShippingProviderError(f"Shiprocket unavailable: {str(e)}")

        if response.status_code not in (200, 201):
            raise ShippingProviderError(f"Shiprocket {path} failed: {response.status_code} - {response.text}")
        return response.json()

    async def create_shipment(self, order: Order) -> Optional[ShipmentInfo]:
        data = await self._request(
            "POST", "/orders/create/adhoc", json=build_shipment_payload(order, self._pickup_location)
        )
        if not data.get("order_id") and not data.get("shipment_id"):
            logger.warning(f"Unexpected Shiprocket response for order {order.order_id}: {data}")
            return None
        return ShipmentInfo(
            provider_order_id=str(data["order_id"]) if data.get("order_id") else None,
            shipment_id=str(data["shipment_id"]) if data.get("shipment_id") else None,
            awb_code=data.get("awb_code") or None,
            courier_name=data.get("courier_name") or None,
        )

    async def track_shipment(self, shipment_id: str) -> dict:
        if not shipment_id:
            raise ShippingProviderError("Shipment ID is required for tracking")
        return await self._request("GET", f"/courier/track/shipment/{shipment_id}")

    async def cancel_shipment(self, awb_codes: List[str]) -> dict:
        if not awb_codes or not all(awb_codes):
            raise ShippingProviderError("Valid AWB codes are required for cancellation")
        return await self._request("POST", "/orders/cancel/shipment/awbs", json={"awbs": awb_codes})
