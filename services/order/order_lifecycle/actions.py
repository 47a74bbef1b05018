"""
Order Service — 遷移アクション

状態遷移に付随する副作用。ステータスのコミット後に実行される。

  validate_order     NEW → VALIDATION_PENDING          Validator に検証を依頼
  allocate_order     VALIDATED → ALLOCATION_PENDING    Allocator に引き当てを依頼
  validation_failure → VALIDATION_EXCEPTION            送信なし（手動対応が必要）
  allocation_failure → ALLOCATION_EXCEPTION            送信なし（手動対応が必要）
  deallocate_order   ALLOCATED → CANCELLED             Allocator に在庫解放を通知
"""

import logging
from typing import Awaitable, Callable

from .events import (
    ALLOCATION_REQUEST,
    DEALLOCATION_REQUEST,
    VALIDATION_REQUEST,
    AllocateOrderRequest,
    DeallocateOrderRequest,
    OrderDto,
    ValidateOrderRequest,
)
from .gateway import MessageGateway
from .models import Order
from .state_machine import TransitionAction

logger = logging.getLogger(__name__)


class ActionHandlers:

    def __init__(self, gateway: MessageGateway) -> None:
        self.gateway = gateway
        self._handlers: dict[TransitionAction, Callable[[Order], Awaitable[None]]] = {
            TransitionAction.VALIDATE_ORDER: self.validate_order,
            TransitionAction.ALLOCATE_ORDER: self.allocate_order,
            TransitionAction.VALIDATION_FAILURE: self.validation_failure,
            TransitionAction.ALLOCATION_FAILURE: self.allocation_failure,
            TransitionAction.DEALLOCATE_ORDER: self.deallocate_order,
        }

    async def execute(self, action: TransitionAction, order: Order) -> None:
        await self._handlers[action](order)

    async def validate_order(self, order: Order) -> None:
        await self.gateway.send(
            VALIDATION_REQUEST,
            ValidateOrderRequest(order=OrderDto.from_order(order)),
        )
        logger.debug("Sent validation request for order id %s", order.id)

    async def allocate_order(self, order: Order) -> None:
        await self.gateway.send(
            ALLOCATION_REQUEST,
            AllocateOrderRequest(order=OrderDto.from_order(order)),
        )
        logger.debug("Sent allocation request for order id %s", order.id)

    async def validation_failure(self, order: Order) -> None:
        logger.error("Order %s failed validation; manual intervention required", order.id)

    async def allocation_failure(self, order: Order) -> None:
        logger.error("Order %s failed allocation; manual intervention required", order.id)

    async def deallocate_order(self, order: Order) -> None:
        await self.gateway.send(
            DEALLOCATION_REQUEST,
            DeallocateOrderRequest(order=OrderDto.from_order(order)),
        )
        logger.debug("Sent deallocation request for order id %s", order.id)
