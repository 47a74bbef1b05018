"""
Order Service — メッセージ定義

Validator / Allocator とやり取りするメッセージのペイロード。
リクエストは注文のスナップショット(OrderDto)を運び、
レスポンスは注文 ID と判定結果を運ぶ。
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .models import AllocationOutcome, Order, OrderEvent, OrderLine, OrderStatus

# ── チャネル名 ───────────────────────────────────

VALIDATION_REQUEST = "validation.request"
VALIDATION_RESPONSE = "validation.response"
ALLOCATION_REQUEST = "allocation.request"
ALLOCATION_RESPONSE = "allocation.response"
DEALLOCATION_REQUEST = "deallocation.request"
ORDER_EVENTS = "order_events"


class OrderDto(BaseModel):
    id: UUID
    customer_ref: str
    status: OrderStatus
    lines: list[OrderLine]

    @classmethod
    def from_order(cls, order: Order) -> "OrderDto":
        return cls(
            id=order.id,
            customer_ref=order.customer_ref,
            status=order.status,
            lines=[line.model_copy() for line in order.lines],
        )


class ValidateOrderRequest(BaseModel):
    """注文の検証を依頼する"""
    order: OrderDto


class ValidateOrderResult(BaseModel):
    """検証結果（Validator からの応答）"""
    order_id: UUID
    is_valid: bool


class AllocateOrderRequest(BaseModel):
    """在庫の引き当てを依頼する"""
    order: OrderDto


class LineAllocation(BaseModel):
    line_id: UUID
    quantity_allocated: int


class AllocateOrderResult(BaseModel):
    """引き当て結果（Allocator からの応答）"""
    order_id: UUID
    outcome: AllocationOutcome
    lines: list[LineAllocation] = Field(default_factory=list)


class DeallocateOrderRequest(BaseModel):
    """引き当て済み在庫の解放を依頼する（応答なし）"""
    order: OrderDto


class OrderStatusChanged(BaseModel):
    """注文のステータスが遷移した"""
    order_id: UUID
    event: OrderEvent
    previous_status: OrderStatus
    status: OrderStatus
    timestamp: datetime
