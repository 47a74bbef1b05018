"""注文サービスの HTTP エンドポイントのテスト"""

from uuid import uuid4

import httpx
import pytest

from order_lifecycle import main
from order_lifecycle.events import DEALLOCATION_REQUEST
from order_lifecycle.models import OrderStatus


@pytest.fixture
async def client(orchestrator, monkeypatch):
    monkeypatch.setattr(main, "orchestrator", orchestrator)
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_create_and_query_order(client):
    resp = await client.post(
        "/commands/orders",
        json={
            "customer_ref": "customer-9",
            "lines": [{"product_id": str(uuid4()), "quantity": 2}],
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == OrderStatus.VALIDATION_PENDING.value

    resp = await client.get(f"/queries/orders/{body['order_id']}")
    assert resp.status_code == 200
    order = resp.json()
    assert order["customer_ref"] == "customer-9"
    assert order["lines"][0]["quantity_ordered"] == 2


async def test_cancel_allocated_order(client, seed_order, gateway):
    order = await seed_order(OrderStatus.ALLOCATED)

    resp = await client.post(f"/commands/orders/{order.id}/cancel")

    assert resp.json()["status"] == OrderStatus.CANCELLED.value
    assert len(gateway.messages(DEALLOCATION_REQUEST)) == 1


async def test_pick_up_order(client, seed_order):
    order = await seed_order(OrderStatus.ALLOCATED)

    resp = await client.post(f"/commands/orders/{order.id}/pickup")

    assert resp.json()["status"] == OrderStatus.PICKED_UP.value


async def test_unknown_order_is_404(client):
    assert (await client.get(f"/queries/orders/{uuid4()}")).status_code == 404
    assert (await client.post(f"/commands/orders/{uuid4()}/cancel")).status_code == 404


async def test_health(client):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok", "service": "order-service"}
