"""
Order Service — 状態遷移表 (State Machine)

注文ライフサイクルの有限状態機械を静的な表として定義する。
状態機械のインスタンスは持たず、永続化されたステータスと
イベントから遷移先を求める純粋関数 apply_event だけを公開する。

  NEW ──VALIDATE_ORDER──▶ VALIDATION_PENDING
      ├─VALIDATION_PASSED──▶ VALIDATED ──ALLOCATE_ORDER──▶ ALLOCATION_PENDING
      │                                      ├─ALLOCATION_SUCCESS──────▶ ALLOCATED ──PICKED_UP──▶ PICKED_UP
      │                                      ├─ALLOCATION_NO_INVENTORY─▶ PENDING_INVENTORY
      │                                      └─ALLOCATION_FAILED───────▶ ALLOCATION_EXCEPTION
      └─VALIDATION_FAILED──▶ VALIDATION_EXCEPTION

  CANCEL_ORDER は VALIDATION_PENDING / VALIDATED / ALLOCATION_PENDING / ALLOCATED
  から CANCELLED へ遷移する（ALLOCATED からは在庫解放を伴う）。
"""

from enum import Enum
from typing import NamedTuple

from .models import OrderEvent, OrderStatus


class TransitionAction(str, Enum):
    """遷移に付随する副作用"""
    VALIDATE_ORDER = "validate_order"
    ALLOCATE_ORDER = "allocate_order"
    VALIDATION_FAILURE = "validation_failure"
    ALLOCATION_FAILURE = "allocation_failure"
    DEALLOCATE_ORDER = "deallocate_order"


class Transition(NamedTuple):
    source: OrderStatus
    event: OrderEvent
    target: OrderStatus
    action: TransitionAction | None = None


INITIAL_STATUS = OrderStatus.NEW

TERMINAL_STATUSES = frozenset({
    OrderStatus.PICKED_UP,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.VALIDATION_EXCEPTION,
    OrderStatus.ALLOCATION_EXCEPTION,
    OrderStatus.DELIVERY_EXCEPTION,
})

_S = OrderStatus
_E = OrderEvent
_A = TransitionAction

TRANSITIONS: tuple[Transition, ...] = (
    Transition(_S.NEW, _E.VALIDATE_ORDER, _S.VALIDATION_PENDING, _A.VALIDATE_ORDER),
    Transition(_S.VALIDATION_PENDING, _E.VALIDATION_PASSED, _S.VALIDATED),
    Transition(_S.VALIDATION_PENDING, _E.VALIDATION_FAILED, _S.VALIDATION_EXCEPTION, _A.VALIDATION_FAILURE),
    Transition(_S.VALIDATION_PENDING, _E.CANCEL_ORDER, _S.CANCELLED),
    Transition(_S.VALIDATED, _E.ALLOCATE_ORDER, _S.ALLOCATION_PENDING, _A.ALLOCATE_ORDER),
    Transition(_S.VALIDATED, _E.CANCEL_ORDER, _S.CANCELLED),
    Transition(_S.ALLOCATION_PENDING, _E.ALLOCATION_SUCCESS, _S.ALLOCATED),
    Transition(_S.ALLOCATION_PENDING, _E.ALLOCATION_NO_INVENTORY, _S.PENDING_INVENTORY),
    Transition(_S.ALLOCATION_PENDING, _E.ALLOCATION_FAILED, _S.ALLOCATION_EXCEPTION, _A.ALLOCATION_FAILURE),
    Transition(_S.ALLOCATION_PENDING, _E.CANCEL_ORDER, _S.CANCELLED),
    Transition(_S.ALLOCATED, _E.PICKED_UP, _S.PICKED_UP),
    Transition(_S.ALLOCATED, _E.CANCEL_ORDER, _S.CANCELLED, _A.DEALLOCATE_ORDER),
)

_TABLE: dict[tuple[OrderStatus, OrderEvent], Transition] = {
    (t.source, t.event): t for t in TRANSITIONS
}


def apply_event(status: OrderStatus, event: OrderEvent) -> Transition | None:
    """
    現在のステータスにイベントを適用した遷移を返す。

    表に行がなければ None（イベントは拒否され、ステータスは変わらない）。
    """
    return _TABLE.get((status, event))


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_events(status: OrderStatus) -> list[OrderEvent]:
    return [t.event for t in TRANSITIONS if t.source == status]
