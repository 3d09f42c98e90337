"""
收益与提现仓储接口
"""
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .entity import SellerEarning, WithdrawalRequest, WithdrawalStatus


class EarningRepository(ABC):

    @abstractmethod
    async def create(self, earning: SellerEarning) -> SellerEarning:
        """创建收益；同一订单行重复入账时返回已有记录"""
        pass

    @abstractmethod
    async def exists_for_order(self, order_id: str) -> bool:
        pass

    @abstractmethod
    async def sum_net_completed(self, seller_id: str, currency: str) -> int:
        """指定币种已完成收益的净额合计"""
        pass


class WithdrawalRepository(ABC):

    @abstractmethod
    async def lock_seller(self, seller_id: str) -> None:
        """在当前事务内串行化同一卖家的提现（余额读取 + 预留写入）"""
        pass

    @abstractmethod
    async def create(self, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
        pass

    @abstractmethod
    async def get_by_id(self, withdrawal_id: str) -> Optional[WithdrawalRequest]:
        pass

    @abstractmethod
    async def update(self, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
        pass

    @abstractmethod
    async def sum_amount(self, seller_id: str, currency: str, statuses: Iterable[WithdrawalStatus]) -> int:
        """指定币种、指定状态提现的申请金额合计"""
        pass
