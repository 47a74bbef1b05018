import json
import os
from uuid import uuid4

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from order_lifecycle.consistency import ConsistencyWaiter
from order_lifecycle.gateway import encode_payload
from order_lifecycle.models import Order, OrderLine, OrderStatus
from order_lifecycle.orchestrator import OrderLifecycleOrchestrator
from order_lifecycle.order_store import OrderStore, create_schema


class RecordingGateway:
    """送信したメッセージを記録し、受信はテストから明示的に配送する。"""

    def __init__(self) -> None:
        self.sent: list[tuple[str, object]] = []
        self.handlers: dict[str, list] = {}

    async def send(self, channel, payload) -> None:
        self.sent.append((channel, payload))

    def on_message(self, channel, handler) -> None:
        self.handlers.setdefault(channel, []).append(handler)

    def messages(self, channel: str) -> list:
        return [payload for c, payload in self.sent if c == channel]

    async def deliver(self, channel: str, payload) -> None:
        # ワイヤ上と同じく JSON を経由させる
        data = json.loads(encode_payload(payload))
        for handler in self.handlers.get(channel, []):
            await handler(data)


@pytest.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    """一時ファイルの SQLite にスキーマを作る。"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}", echo=False)
    await create_schema(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def waiter(session_factory) -> ConsistencyWaiter:
    return ConsistencyWaiter(session_factory, poll_interval=0.01, max_attempts=3)


@pytest.fixture
def orchestrator(session_factory, gateway, waiter) -> OrderLifecycleOrchestrator:
    return OrderLifecycleOrchestrator(session_factory, gateway, waiter)


@pytest.fixture
def new_order():
    def _make(line_count: int = 2, customer_ref: str = "customer-1") -> Order:
        return Order(
            customer_ref=customer_ref,
            lines=[
                OrderLine(product_id=uuid4(), quantity_ordered=5 + i)
                for i in range(line_count)
            ],
        )
    return _make


@pytest.fixture
def seed_order(session_factory, new_order):
    """指定したステータスの注文を直接保存する。"""
    async def _seed(status: OrderStatus, line_count: int = 2) -> Order:
        order = new_order(line_count).model_copy(update={"id": uuid4(), "status": status})
        async with session_factory() as session:
            store = OrderStore(session)
            saved = await store.upsert(order)
            await store.commit()
        return saved
    return _seed


@pytest.fixture
def load_order(session_factory):
    async def _load(order_id) -> Order | None:
        async with session_factory() as session:
            return await OrderStore(session).get(order_id)
    return _load
