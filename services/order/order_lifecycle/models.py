"""
Order Service — ドメインモデル

注文(Order)と注文明細(OrderLine)、およびステータス・イベントの列挙型。

注文のステータスは状態遷移表(state_machine.py)で定義された
遷移によってのみ変化する。明細は作成後に変更されず、
quantity_allocated だけが在庫引き当ての応答で更新される。
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    NEW = "NEW"
    VALIDATION_PENDING = "VALIDATION_PENDING"
    VALIDATED = "VALIDATED"
    VALIDATION_EXCEPTION = "VALIDATION_EXCEPTION"
    ALLOCATION_PENDING = "ALLOCATION_PENDING"
    ALLOCATED = "ALLOCATED"
    ALLOCATION_EXCEPTION = "ALLOCATION_EXCEPTION"
    PENDING_INVENTORY = "PENDING_INVENTORY"
    PICKED_UP = "PICKED_UP"
    DELIVERED = "DELIVERED"
    DELIVERY_EXCEPTION = "DELIVERY_EXCEPTION"
    CANCELLED = "CANCELLED"


class OrderEvent(str, Enum):
    VALIDATE_ORDER = "VALIDATE_ORDER"
    VALIDATION_PASSED = "VALIDATION_PASSED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    ALLOCATE_ORDER = "ALLOCATE_ORDER"
    ALLOCATION_SUCCESS = "ALLOCATION_SUCCESS"
    ALLOCATION_FAILED = "ALLOCATION_FAILED"
    ALLOCATION_NO_INVENTORY = "ALLOCATION_NO_INVENTORY"
    PICKED_UP = "PICKED_UP"
    CANCEL_ORDER = "CANCEL_ORDER"


class AllocationOutcome(str, Enum):
    """Allocator からの引き当て結果"""
    SUCCESS = "SUCCESS"
    NO_INVENTORY = "NO_INVENTORY"
    FAILED = "FAILED"


class OrderLine(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    product_id: UUID
    quantity_ordered: int
    quantity_allocated: int = 0


class Order(BaseModel):
    """
    注文集約

    version は楽観的ロック用。ステータスを書き込むたびに +1 される。
    """
    id: UUID | None = None
    customer_ref: str
    status: OrderStatus = OrderStatus.NEW
    lines: list[OrderLine] = Field(default_factory=list)
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrderEventMessage(BaseModel):
    """
    状態機械に送るイベント。

    対象の注文 ID は暗黙のヘッダーではなく明示的なフィールドで運ぶ。
    """
    order_id: UUID
    event: OrderEvent
