import base64
import json

import httpx
import pytest

from order_engine.domain.exceptions import InvoiceRenderingError, ShippingProviderError
from order_engine.domain.models import PaymentMethod
from order_engine.infrastructure.http_clients import (
    DEFAULT_PHONE, DEFAULT_PINCODE, HTTPInvoiceClient, HTTPNotificationsClient, ShiprocketClient,
    build_shipment_payload, validate_email, validate_phone, validate_pincode
)


class Recorder:
    """MockTransport handler that records requests and replays canned responses"""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        canned = self.routes[request.url.path]
        return httpx.Response(canned.status_code, headers=canned.headers, content=canned.content)

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


# ============================================================================
# Notifications
# ============================================================================

class TestNotificationsClient:

    @pytest.mark.asyncio
    async def test_confirmation_with_invoice(self, make_order):
        recorder = Recorder({"/api/email": httpx.Response(200, json={"success": True})})
        client = HTTPNotificationsClient("http://mail", "token", transport=httpx.MockTransport(recorder))
        order = make_order()

        assert await client.send_order_confirmation(order, b"%PDF")

        request = recorder.requests[0]
        assert request.headers["X-API-Key"] == "token"
        body = recorder.bodies("/api/email")[0]
        assert body["type"] == "order-confirmation"
        assert body["to"] == "asha@example.com"
        assert body["data"]["customerName"] == "Asha Menon"
        assert body["data"]["order_id"] == order.order_id
        assert base64.b64decode(body["attachments"][0]["content"]) == b"%PDF"

    @pytest.mark.asyncio
    async def test_shipping_confirmation_carries_tracking(self, make_order):
        recorder = Recorder({"/api/email": httpx.Response(201)})
        client = HTTPNotificationsClient("http://mail", "token", transport=httpx.MockTransport(recorder))

        assert await client.send_shipping_confirmation(make_order(), "AWB1", "Delhivery")
        body = recorder.bodies("/api/email")[0]
        assert (body["data"]["awbCode"], body["data"]["courierName"]) == ("AWB1", "Delhivery")

    @pytest.mark.asyncio
    async def test_no_customer_email(self, make_order):
        recorder = Recorder({})
        client = HTTPNotificationsClient("http://mail", "token", transport=httpx.MockTransport(recorder))

        assert not await client.send_refund_email(make_order(user_email=None), "Damaged")
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self, make_order):
        recorder = Recorder({"/api/email": httpx.Response(503)})
        client = HTTPNotificationsClient(
            "http://mail", "token", max_retries=3, retry_delay=0, transport=httpx.MockTransport(recorder)
        )

        assert not await client.send_cancellation_email(make_order(), "Other")
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_rejected_by_api(self, make_order):
        recorder = Recorder({"/api/email": httpx.Response(200, json={"success": False, "error": "bad template"})})
        client = HTTPNotificationsClient("http://mail", "token", transport=httpx.MockTransport(recorder))

        assert not await client.send_cancellation_email(make_order(), "Other")


# ============================================================================
# Invoices
# ============================================================================

class TestInvoiceClient:

    @pytest.mark.asyncio
    async def test_returns_pdf_bytes(self):
        recorder = Recorder({"/api/invoices": httpx.Response(200, content=b"%PDF-1.7")})
        client = HTTPInvoiceClient("http://invoices", "token", transport=httpx.MockTransport(recorder))

        assert await client.render_invoice({"order_id": "o-1"}) == b"%PDF-1.7"
        assert recorder.bodies("/api/invoices") == [{"order_id": "o-1"}]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        recorder = Recorder({"/api/invoices": httpx.Response(500)})
        client = HTTPInvoiceClient("http://invoices", "token", transport=httpx.MockTransport(recorder))

        with pytest.raises(InvoiceRenderingError):
            await client.render_invoice({"order_id": "o-1"})


# ============================================================================
# Shiprocket
# ============================================================================

LOGIN = "/v1/external/auth/login"
CREATE = "/v1/external/orders/create/adhoc"
CANCEL = "/v1/external/orders/cancel/shipment/awbs"
BASE_URL = "https://shiprocket.test/v1/external"


class TestShiprocketClient:

    @pytest.mark.asyncio
    async def test_create_shipment_and_token_reuse(self, make_order):
        recorder = Recorder({
            LOGIN: httpx.Response(200, json={"token": "jwt"}),
            CREATE: httpx.Response(200, json={"order_id": 991, "shipment_id": 881, "awb_code": "", "courier_name": ""}),
        })
        client = ShiprocketClient(BASE_URL, "ops@example.com", "secret", transport=httpx.MockTransport(recorder))

        first = await client.create_shipment(make_order())
        await client.create_shipment(make_order())

        assert (first.provider_order_id, first.shipment_id, first.awb_code) == ("991", "881", None)
        assert len(recorder.bodies(LOGIN)) == 1
        create_requests = [r for r in recorder.requests if r.url.path == CREATE]
        assert create_requests[0].headers["Authorization"] == "Bearer jwt"

    @pytest.mark.asyncio
    async def test_unexpected_response_returns_none(self, make_order):
        recorder = Recorder({
            LOGIN: httpx.Response(200, json={"token": "jwt"}),
            CREATE: httpx.Response(200, json={"status": "NEW"}),
        })
        client = ShiprocketClient(BASE_URL, "ops@example.com", "secret", transport=httpx.MockTransport(recorder))

        assert await client.create_shipment(make_order()) is None

    @pytest.mark.asyncio
    async def test_failed_login(self, make_order):
        recorder = Recorder({LOGIN: httpx.Response(403)})
        client = ShiprocketClient(BASE_URL, "ops@example.com", "wrong", transport=httpx.MockTransport(recorder))

        with pytest.raises(ShippingProviderError):
            await client.create_shipment(make_order())

    @pytest.mark.asyncio
    async def test_cancel(self):
        recorder = Recorder({
            LOGIN: httpx.Response(200, json={"token": "jwt"}),
            CANCEL: httpx.Response(200, json={"message": "Cancelled"}),
        })
        client = ShiprocketClient(BASE_URL, "ops@example.com", "secret", transport=httpx.MockTransport(recorder))

        assert await client.cancel_shipment(["AWB1"]) == {"message": "Cancelled"}
        assert recorder.bodies(CANCEL) == [{"awbs": ["AWB1"]}]

    @pytest.mark.asyncio
    async def test_cancel_requires_awb(self):
        client = ShiprocketClient(BASE_URL, "ops@example.com", "secret", transport=httpx.MockTransport(Recorder({})))
        with pytest.raises(ShippingProviderError):
            await client.cancel_shipment([])


def test_shipment_payload(make_order):
    order = make_order(payment_method=PaymentMethod.RAZORPAY)

    payload = build_shipment_payload(order, pickup_location="Warehouse")

    assert payload["pickup_location"] == "Warehouse"
    assert payload["payment_method"] == "Prepaid"
    assert payload["billing_pincode"] == "682001"
    assert payload["billing_phone"] == "9876543210"
    assert payload["order_items"][0]["units"] == 2
    assert payload["sub_total"] == 1000.0


def test_field_validation():
    assert validate_phone("+91 98765 43210") == "9876543210"
    assert validate_phone("12345") == DEFAULT_PHONE
    assert validate_pincode("682 001") == "682001"
    assert validate_pincode(None) == DEFAULT_PINCODE
    assert validate_email("not-an-email") == "noreply@example.com"
