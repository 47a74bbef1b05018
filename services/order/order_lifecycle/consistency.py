"""
Order Service — 整合性待機 (Consistency Waiter)

「イベントを送った」と「ステータスが永続化され読める」の間の隙間を埋める。
連続するイベント（例: VALIDATION_PASSED → ALLOCATE_ORDER）で、
2 つ目のイベントが 1 つ目の確定結果を前提にする場合に使う。

  1. 新しいセッションで注文を読み、期待したステータスなら終了
  2. 違えば、永続化側(TransitionPersister)からのコミット通知を
     poll_interval 秒だけ待つ
  3. max_attempts 回読んでも一致しなければ、例外にせずに先へ進む

3 は可用性を優先した意図的な妥協。後続のイベントは前提を満たさなければ
状態遷移表で拒否される（何も起きない）ので、処理が壊れることはない。
"""

import asyncio
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import OrderStatus
from .order_store import OrderStore

logger = logging.getLogger(__name__)


class ConsistencyWaiter:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval: float = 0.1,
        max_attempts: int = 10,
    ) -> None:
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._signals: dict[tuple[UUID, OrderStatus], set[asyncio.Event]] = {}

    def committed(self, order_id: UUID, status: OrderStatus) -> None:
        """ステータスのコミット完了を待機中の呼び出し元へ通知する。"""
        for signal in self._signals.get((order_id, status), ()):
            signal.set()

    async def wait_for_status(self, order_id: UUID, expected: OrderStatus) -> bool:
        """
        注文が expected のステータスで読めるようになるまで待つ。

        一致したら True、試行回数を使い切ったら False を返す。
        """
        key = (order_id, expected)
        signal = asyncio.Event()
        self._signals.setdefault(key, set()).add(signal)

        try:
            for attempt in range(1, self.max_attempts + 1):
                status = await self._load_status(order_id)
                if status == expected:
                    logger.debug(
                        "Order %s reached %s after %d read(s)", order_id, expected.value, attempt
                    )
                    return True

                if attempt < self.max_attempts:
                    try:
                        await asyncio.wait_for(signal.wait(), timeout=self.poll_interval)
                    except asyncio.TimeoutError:
                        pass
                    # 通知後に読んでも一致しなければ、次は間隔いっぱい待つ
                    signal.clear()
        finally:
            waiting = self._signals.get(key)
            if waiting is not None:
                waiting.discard(signal)
                if not waiting:
                    del self._signals[key]

        logger.warning(
            "Gave up waiting for order %s to reach %s after %d attempts; proceeding",
            order_id, expected.value, self.max_attempts,
        )
        return False

    async def _load_status(self, order_id: UUID) -> OrderStatus | None:
        async with self.session_factory() as session:
            order = await OrderStore(session).get(order_id)
            return order.status if order else None
