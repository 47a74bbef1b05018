"""
Order Lifecycle Orchestrator — 注文ライフサイクル

注文が出荷可能になるまでには 2 回の非同期往復が必要:
  Validator による検証と、Allocator による在庫引き当て。
オーケストレーターは各イベントを状態遷移表に通し、
ステータスを永続化し、遷移に付随するメッセージを送る。

  フロー:
  ┌──────────────────────────────────────────────────────────────┐
  │  1. create_order: NEW で保存 → VALIDATE_ORDER                │
  │     └─ validation.request を送信                             │
  │  2. validation.response                                      │
  │     ├─ 有効 → VALIDATION_PASSED → (確定を待つ) → ALLOCATE_ORDER │
  │     │         └─ allocation.request を送信                   │
  │     └─ 無効 → VALIDATION_FAILED (終端)                       │
  │  3. allocation.response                                      │
  │     ├─ SUCCESS      → ALLOCATED + 明細の引き当て数を反映     │
  │     ├─ NO_INVENTORY → PENDING_INVENTORY + 引き当て数を反映   │
  │     └─ FAILED       → ALLOCATION_EXCEPTION (終端)            │
  │  4. pick_up / cancel                                         │
  └──────────────────────────────────────────────────────────────┘

状態機械のインスタンスは保持しない。イベントごとに永続化された
ステータスを読み直して遷移を決めるので、オーケストレーター自体は
ステートレスで、複数のワーカーで並行に動かせる。
"""

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .actions import ActionHandlers
from .consistency import ConsistencyWaiter
from .events import ORDER_EVENTS, LineAllocation, OrderStatusChanged
from .gateway import MessageGateway
from .models import AllocationOutcome, Order, OrderEvent, OrderEventMessage, OrderStatus
from .order_store import OrderStore, OrderVersionConflictError
from .persister import TransitionPersister
from .state_machine import Transition, apply_event, is_terminal

logger = logging.getLogger(__name__)

_ALLOCATION_EVENTS = {
    AllocationOutcome.SUCCESS: OrderEvent.ALLOCATION_SUCCESS,
    AllocationOutcome.NO_INVENTORY: OrderEvent.ALLOCATION_NO_INVENTORY,
    AllocationOutcome.FAILED: OrderEvent.ALLOCATION_FAILED,
}

class OrderLifecycleOrchestrator:
    """注文ライフサイクルのオーケストレーター"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: MessageGateway,
        waiter: ConsistencyWaiter,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.waiter = waiter
        self.persister = TransitionPersister(waiter)
        self.actions = ActionHandlers(gateway)

    # ── 公開オペレーション ───────────────────────────

    async def create_order(self, order: Order) -> Order:
        """
        注文作成

        注文と明細の ID は常に新しく採番し、ステータスは NEW に強制する。
        同じ注文を再送しても別の注文として作られる。
        保存をコミットしてから VALIDATE_ORDER を送る。
        """
        order = order.model_copy(update={
            "id": uuid4(),
            "status": OrderStatus.NEW,
            "version": 0,
            "lines": [
                line.model_copy(update={"id": uuid4(), "quantity_allocated": 0})
                for line in order.lines
            ],
        })

        async with self.session_factory() as session:
            store = OrderStore(session)
            saved = await store.upsert(order)
            await store.commit()
        logger.info("Created order %s with %d line(s)", saved.id, len(saved.lines))

        await self._send_event(saved.id, OrderEvent.VALIDATE_ORDER)
        return await self.get_order(saved.id)

    async def process_validation_result(self, order_id: UUID, is_valid: bool) -> None:
        logger.debug("Process validation result for order %s valid? %s", order_id, is_valid)

        if await self.get_order(order_id) is None:
            logger.error("Order Not Found. Id: %s", order_id)
            return

        if not is_valid:
            await self._send_event(order_id, OrderEvent.VALIDATION_FAILED)
            return

        if await self._send_event(order_id, OrderEvent.VALIDATION_PASSED):
            await self.waiter.wait_for_status(order_id, OrderStatus.VALIDATED)
        await self._send_event(order_id, OrderEvent.ALLOCATE_ORDER)

    async def process_allocation_outcome(
        self,
        order_id: UUID,
        outcome: AllocationOutcome,
        line_allocations: list[LineAllocation],
    ) -> None:
        logger.debug("Process allocation outcome for order %s: %s", order_id, outcome.value)

        if await self.get_order(order_id) is None:
            logger.error("Order Not Found. Id: %s", order_id)
            return

        event = _ALLOCATION_EVENTS[outcome]
        accepted = await self._send_event(order_id, event)
        if outcome is AllocationOutcome.FAILED or not accepted:
            return

        target = apply_event(OrderStatus.ALLOCATION_PENDING, event).target
        await self.waiter.wait_for_status(order_id, target)
        await self._update_allocated_quantities(order_id, line_allocations)

    async def pick_up(self, order_id: UUID) -> None:
        await self._send_event(order_id, OrderEvent.PICKED_UP)

    async def cancel(self, order_id: UUID) -> None:
        await self._send_event(order_id, OrderEvent.CANCEL_ORDER)

    async def get_order(self, order_id: UUID) -> Order | None:
        async with self.session_factory() as session:
            return await OrderStore(session).get(order_id)

    # ── 内部処理 ─────────────────────────────────────

    async def _send_event(self, order_id: UUID, event: OrderEvent) -> bool:
        """
        1 つのイベントを処理する。遷移が受理されたら True を返す。

        読み込みから書き込みまでの間に別の遷移が割り込んで version が
        競合した場合は、最新のステータスでもう一度だけ遷移表を引き直す。
        割り込んだ遷移の後では拒否されるイベントなら、何もしない。
        """
        message = OrderEventMessage(order_id=order_id, event=event)

        try:
            result = await self._apply(message)
        except OrderVersionConflictError:
            logger.info(
                "Order %s changed concurrently; re-applying %s", order_id, event.value
            )
            result = await self._apply(message)

        if result is None:
            return False
        transition, updated = result
        if updated is None:
            return True

        logger.info(
            "Order %s: %s --%s--> %s",
            order_id, transition.source.value, event.value, transition.target.value,
        )

        if transition.action is not None:
            await self.actions.execute(transition.action, updated)

        await self.gateway.send(
            ORDER_EVENTS,
            OrderStatusChanged(
                order_id=order_id,
                event=event,
                previous_status=transition.source,
                status=transition.target,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return True

    async def _apply(self, message: OrderEventMessage) -> tuple[Transition, Order | None] | None:
        """
        永続化されたステータスを読み、遷移表で遷移先を決めて
        1 つのトランザクションでコミットする。
        注文が無い、またはイベントが拒否されたら None を返す。
        """
        async with self.session_factory() as session:
            store = OrderStore(session)
            order = await store.get(message.order_id)
            if order is None:
                logger.error("Order Not Found. Id: %s", message.order_id)
                return None

            transition = apply_event(order.status, message.event)
            if transition is None:
                logger.warning(
                    "Event %s rejected for order %s in status %s",
                    message.event.value, message.order_id, order.status.value,
                )
                return None

            updated = await self.persister.persist(store, order, transition.target)
        return transition, updated

    async def _update_allocated_quantities(
        self,
        order_id: UUID,
        line_allocations: list[LineAllocation],
    ) -> None:
        """応答に含まれる明細 ID と一致する明細だけ引き当て数を更新する。"""
        allocated = {a.line_id: a.quantity_allocated for a in line_allocations}

        async with self.session_factory() as session:
            store = OrderStore(session)
            order = await store.get(order_id)
            if order is None:
                logger.error("Order Not Found. Id: %s", order_id)
                return
            if is_terminal(order.status):
                logger.warning(
                    "Order %s is %s; allocated quantities not applied",
                    order_id, order.status.value,
                )
                return

            lines = [
                line.model_copy(update={"quantity_allocated": allocated[line.id]})
                if line.id in allocated else line
                for line in order.lines
            ]
            await store.upsert(order.model_copy(update={"lines": lines}))
            await store.commit()
