"""
Order Service — 注文ストア (OrderStore)

注文と注文明細を保存・取得する。
version 列による楽観的ロックで、同じ注文への同時書き込みを検知する:
古い version を前提にした UPDATE は 0 行更新となり、競合として扱う。
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from .models import Order, OrderLine, OrderStatus

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(36) PRIMARY KEY,
        customer_ref VARCHAR(255) NOT NULL,
        status VARCHAR(32) NOT NULL,
        version INTEGER NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_lines (
        id VARCHAR(36) PRIMARY KEY,
        order_id VARCHAR(36) NOT NULL REFERENCES orders (id),
        position INTEGER NOT NULL,
        product_id VARCHAR(36) NOT NULL,
        quantity_ordered INTEGER NOT NULL,
        quantity_allocated INTEGER NOT NULL DEFAULT 0
    )
    """,
)


class OrderStoreError(Exception):
    """注文の永続化に失敗した"""


class OrderVersionConflictError(OrderStoreError):
    def __init__(self, order_id: UUID, expected_version: int) -> None:
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(
            f"Order {order_id} was modified concurrently (expected version {expected_version})"
        )


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for ddl in SCHEMA:
            await conn.execute(text(ddl))


def _as_datetime(value) -> datetime | None:
    # SQLite は TIMESTAMP を文字列で返す
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class OrderStore:
    """1 つのセッション（= 1 つの論理トランザクション）に紐づく注文ストア"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, order_id: UUID) -> Order | None:
        result = await self.session.execute(
            text("SELECT * FROM orders WHERE id = :id"),
            {"id": str(order_id)},
        )
        row = result.fetchone()
        if not row:
            return None

        lines = await self.session.execute(
            text("""
                SELECT id, product_id, quantity_ordered, quantity_allocated
                FROM order_lines
                WHERE order_id = :id
                ORDER BY position ASC
            """),
            {"id": str(order_id)},
        )
        return Order(
            id=UUID(str(row.id)),
            customer_ref=row.customer_ref,
            status=OrderStatus(row.status),
            version=row.version,
            created_at=_as_datetime(row.created_at),
            updated_at=_as_datetime(row.updated_at),
            lines=[
                OrderLine(
                    id=UUID(str(line.id)),
                    product_id=UUID(str(line.product_id)),
                    quantity_ordered=line.quantity_ordered,
                    quantity_allocated=line.quantity_allocated,
                )
                for line in lines.fetchall()
            ],
        )

    async def upsert(self, order: Order) -> Order:
        """
        注文を保存する。

        新規なら注文と明細を INSERT する。既存なら version を検査して
        ステータスを更新し、明細は quantity_allocated だけを書き戻す
        （明細の構成と注文数量は作成後に変更しない）。
        """
        if order.id is None:
            order = order.model_copy(update={"id": uuid4()})

        existing = await self.session.execute(
            text("SELECT version FROM orders WHERE id = :id"),
            {"id": str(order.id)},
        )
        if existing.fetchone() is None:
            await self._insert(order)
        else:
            await self.update_status(order.id, order.status, order.version)
            for line in order.lines:
                await self.session.execute(
                    text("""
                        UPDATE order_lines
                        SET quantity_allocated = :qty
                        WHERE id = :id AND order_id = :order_id
                    """),
                    {"qty": line.quantity_allocated, "id": str(line.id), "order_id": str(order.id)},
                )

        await self.flush()
        return await self.get(order.id)

    async def update_status(
        self,
        order_id: UUID,
        status: OrderStatus,
        expected_version: int,
    ) -> int:
        """ステータスを書き込み、新しい version を返す。"""
        result = await self.session.execute(
            text("""
                UPDATE orders
                SET status = :status, version = version + 1, updated_at = CURRENT_TIMESTAMP
                WHERE id = :id AND version = :version
            """),
            {"status": status.value, "id": str(order_id), "version": expected_version},
        )
        if result.rowcount == 0:
            raise OrderVersionConflictError(order_id, expected_version)
        return expected_version + 1

    async def flush(self) -> None:
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def _insert(self, order: Order) -> None:
        await self.session.execute(
            text("""
                INSERT INTO orders (id, customer_ref, status, version)
                VALUES (:id, :customer_ref, :status, 1)
            """),
            {"id": str(order.id), "customer_ref": order.customer_ref, "status": order.status.value},
        )
        for position, line in enumerate(order.lines):
            await self.session.execute(
                text("""
                    INSERT INTO order_lines
                        (id, order_id, position, product_id, quantity_ordered, quantity_allocated)
                    VALUES
                        (:id, :order_id, :position, :product_id, :quantity_ordered, :quantity_allocated)
                """),
                {
                    "id": str(line.id),
                    "order_id": str(order.id),
                    "position": position,
                    "product_id": str(line.product_id),
                    "quantity_ordered": line.quantity_ordered,
                    "quantity_allocated": line.quantity_allocated,
                },
            )
