"""
Order Service — 遷移の永続化 (Transition Persister)

状態遷移のたびに同期的に呼ばれ、新しいステータスを OrderStore に書き込んで
コミットする。遷移の妥当性は再検査しない（状態遷移表の判断を信頼する）。
"""

import logging

from .consistency import ConsistencyWaiter
from .models import Order, OrderStatus
from .order_store import OrderStore, OrderVersionConflictError

logger = logging.getLogger(__name__)


class TransitionPersister:

    def __init__(self, waiter: ConsistencyWaiter) -> None:
        self.waiter = waiter

    async def persist(self, store: OrderStore, order: Order, status: OrderStatus) -> Order | None:
        """
        注文のステータスを status に更新してコミットする。

        読み込んだ時点の version を前提に書き込むので、同じ注文への
        並行した遷移は片方が競合として失敗する。ただし既に同じステータスが
        書かれていれば、同じ書き込みの繰り返しとして None を返す
        （副作用は先に書いた側が実行済み）。
        別のステータスとの競合は OrderVersionConflictError として送出し、
        呼び出し元が最新のステータスで遷移表を引き直す。
        それ以外の失敗は呼び出し元の処理全体を中断させる。
        """
        logger.debug("Saving status for order [%s], status [%s]", order.id, status.value)

        try:
            version = await store.update_status(order.id, status, order.version)
        except OrderVersionConflictError:
            await store.rollback()
            current = await store.get(order.id)
            if current is None or current.status != status:
                raise
            logger.info("Order %s already in %s; write skipped", order.id, status.value)
            self.waiter.committed(order.id, status)
            return None

        await store.flush()
        await store.commit()

        self.waiter.committed(order.id, status)
        return order.model_copy(update={"status": status, "version": version})
