"""
订单领域实体

订单状态只能由已确认（completed）的账本行推进到 paid，
客户端的乐观状态永远不会直接修改订单。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from domain.common.money import validate_amount, validate_currency


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class OrderItem:
    """订单行 - 每个订单行对应一笔卖家收益"""

    id: Optional[str]
    seller_id: str
    unit_price: int
    quantity: int = 1
    order_id: Optional[str] = None

    def __post_init__(self):
        validate_amount(self.unit_price, field="unit_price")
        validate_amount(self.quantity, field="quantity")

    @property
    def gross_amount(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class Order:
    id: Optional[str]
    buyer_id: str
    total_amount: int
    currency: str
    status: OrderStatus = OrderStatus.PENDING
    items: List[OrderItem] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        validate_amount(self.total_amount, field="total_amount")
        self.currency = validate_currency(self.currency)
        self.status = OrderStatus(self.status)

    def mark_paid(self) -> bool:
        """业务规则：仅 pending 订单可被标记为已支付；返回是否发生变化"""
        if self.status != OrderStatus.PENDING:
            return False
        self.status = OrderStatus.PAID
        self.updated_at = datetime.now(timezone.utc)
        return True
