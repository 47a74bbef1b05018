"""
Order Service — FastAPI エントリーポイント

オーケストレーターの公開オペレーションを HTTP で受け付ける。
Validator / Allocator からの応答は Redis Pub/Sub で購読し、
バックグラウンドでオーケストレーターに渡す。

┌────────┐  HTTP  ┌───────────────┐  Redis Pub/Sub  ┌─────────────────────┐
│ Client │ ─────▶ │ Order Service │ ◀─────────────▶ │ Validator/Allocator │
└────────┘        └───────┬───────┘                 └─────────────────────┘
                          │
                  ┌───────▼───────┐
                  │   Order DB    │
                  └───────────────┘
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from . import config
from .consistency import ConsistencyWaiter
from .gateway import RedisMessageGateway
from .listeners import register_listeners
from .models import Order, OrderLine
from .orchestrator import OrderLifecycleOrchestrator
from .order_store import create_schema

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

engine = create_async_engine(config.DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, expire_on_commit=False)
orchestrator: OrderLifecycleOrchestrator | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """起動時にスキーマを用意し、応答チャネルのサブスクライバを開始する。"""
    global orchestrator
    await create_schema(engine)

    redis_pool = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    gateway = RedisMessageGateway(redis_pool)
    waiter = ConsistencyWaiter(
        async_session,
        poll_interval=config.CONSISTENCY_POLL_INTERVAL,
        max_attempts=config.CONSISTENCY_MAX_ATTEMPTS,
    )
    orchestrator = OrderLifecycleOrchestrator(async_session, gateway, waiter)
    register_listeners(gateway, orchestrator)

    shutdown_event = asyncio.Event()
    subscriber_task = asyncio.create_task(gateway.run(shutdown_event))
    yield
    shutdown_event.set()
    subscriber_task.cancel()
    try:
        await subscriber_task
    except asyncio.CancelledError:
        pass
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Request Models ───────────────────────────────

class OrderLineRequest(BaseModel):
    product_id: UUID
    quantity: int


class CreateOrderRequest(BaseModel):
    customer_ref: str
    lines: list[OrderLineRequest]


# ── Command Endpoints ────────────────────────────

@app.post("/commands/orders")
async def cmd_create_order(req: CreateOrderRequest):
    """注文作成コマンド"""
    order = await orchestrator.create_order(
        Order(
            customer_ref=req.customer_ref,
            lines=[
                OrderLine(product_id=line.product_id, quantity_ordered=line.quantity)
                for line in req.lines
            ],
        )
    )
    return {"order_id": str(order.id), "status": order.status, "version": order.version}


@app.post("/commands/orders/{order_id}/pickup")
async def cmd_pick_up(order_id: UUID):
    await orchestrator.pick_up(order_id)
    return await _current_status(order_id)


@app.post("/commands/orders/{order_id}/cancel")
async def cmd_cancel(order_id: UUID):
    await orchestrator.cancel(order_id)
    return await _current_status(order_id)


# ── Query Endpoints ──────────────────────────────

@app.get("/queries/orders/{order_id}")
async def query_get_order(order_id: UUID):
    order = await orchestrator.get_order(order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}


async def _current_status(order_id: UUID) -> dict:
    order = await orchestrator.get_order(order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return {"order_id": str(order.id), "status": order.status}
