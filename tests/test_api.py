from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from order_engine.database import get_unit_of_work
from order_engine.main import app
from order_engine.presentation.api import get_lifecycle_manager


@pytest_asyncio.fixture
async def client(uow, lifecycle):
    app.dependency_overrides[get_unit_of_work] = lambda: uow
    app.dependency_overrides[get_lifecycle_manager] = lambda: lifecycle
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def order_body(quantity: int = 2, **fields) -> dict:
    body = {
        "user_id": "user-1",
        "user_email": "asha@example.com",
        "items": [{"id": "p1", "name": "Teak Chair", "price": "250", "quantity": quantity, "vendor": "v1"}],
        "address": {"first_name": "Asha", "city": "Panaji", "state": "Goa", "country": "India"},
        "idempotency_key": f"checkout-{quantity}",
    }
    body.update(fields)
    return body


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_create_and_fetch_order(client):
    created = await client.post("/api/orders", json=order_body())
    assert created.status_code == 201
    order = created.json()
    assert order["order_status"] == "pending"
    assert Decimal(order["subtotal"]) == Decimal("500")
    assert Decimal(order["shipping"]) == Decimal("100")
    assert Decimal(order["total"]) == Decimal("600")

    fetched = await client.get(f"/api/orders/{order['order_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["order_id"] == order["order_id"]


@pytest.mark.asyncio
async def test_invalid_coupon_is_bad_request(client):
    response = await client.post("/api/orders", json=order_body(coupon_code="NOPE"))
    assert response.status_code == 400
    assert response.json()["detail"] == "Coupon cannot be applied: Coupon not found"


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected(client):
    response = await client.post("/api/orders", json=order_body(quantity=0))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_order_is_not_found(client):
    assert (await client.get("/api/orders/missing")).status_code == 404
    confirm = await client.post("/api/orders/missing/confirm", json={"performed_by": "admin-7"})
    assert confirm.status_code == 404


@pytest.mark.asyncio
async def test_confirm_cancel_and_history(client, seed_stock):
    await seed_stock(p1=10)
    order_id = (await client.post("/api/orders", json=order_body())).json()["order_id"]

    confirmed = await client.post(f"/api/orders/{order_id}/confirm", json={"performed_by": "admin-7"})
    assert confirmed.status_code == 200
    assert confirmed.json()["order_status"] == "confirmed"
    assert confirmed.json()["stock_reduced"]

    cancelled = await client.post(
        f"/api/orders/{order_id}/cancel", json={"performed_by": "admin-7", "reason": "Duplicate order"}
    )
    assert cancelled.json()["stock_restored"]

    again = await client.post(
        f"/api/orders/{order_id}/cancel", json={"performed_by": "admin-7", "reason": "Duplicate order"}
    )
    assert again.status_code == 200
    assert again.json()["applicable"] is False

    entries = (await client.get(f"/api/orders/{order_id}/history")).json()["entries"]
    assert [e["action"] for e in entries] == ["order_created", "order_confirmed", "order_cancelled"]
    assert entries[2]["reason"] == "Duplicate order"


@pytest.mark.asyncio
async def test_confirm_without_stock_is_conflict(client, seed_stock):
    await seed_stock(p1=1)
    order_id = (await client.post("/api/orders", json=order_body())).json()["order_id"]

    response = await client.post(f"/api/orders/{order_id}/confirm", json={"performed_by": "admin-7"})

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["insufficient_stock"] == [{"product_id": "p1", "requested": 2, "available": 1}]


@pytest.mark.asyncio
async def test_refund_requires_actor_and_reason(client):
    response = await client.post("/api/orders/any/refund", json={"performed_by": "admin-7"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_status_report(client, seed_stock):
    await seed_stock(p1=3)
    order_id = (await client.post("/api/orders", json=order_body())).json()["order_id"]

    body = (await client.get(f"/api/orders/{order_id}/status")).json()

    assert body["status_description"] == "Waiting for confirmation"
    assert body["stock_status"][0]["stock"] == 3
    assert body["tracking_info"] is None


@pytest.mark.asyncio
async def test_coupon_preview(client):
    response = await client.post("/api/coupons/validate", json={"code": "NOPE", "cart_subtotal": "500"})
    assert response.status_code == 200
    assert response.json()["valid"] is False
    assert response.json()["reason"] == "Coupon not found"


@pytest.mark.asyncio
async def test_cancellation_reasons(client):
    reasons = (await client.get("/api/cancellation-reasons")).json()
    assert "Customer requested cancellation" in reasons
    assert reasons[-1] == "Other"
