"""
订阅仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Subscription


class SubscriptionRepository(ABC):

    @abstractmethod
    async def create(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def get_by_seller(self, seller_id: str) -> Optional[Subscription]:
        """每个卖家最多一条订阅"""
        pass

    @abstractmethod
    async def update(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    async def list_due_for_rollover(self, now: datetime, limit: int = 100) -> List[Subscription]:
        """已排期降级且周期已到期的订阅"""
        pass
