"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order


class OrderRepository(ABC):

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单（含订单行）"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单（含订单行）"""
        pass

    @abstractmethod
    async def update_status(self, order: Order) -> Order:
        """持久化订单状态"""
        pass
