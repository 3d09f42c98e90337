"""
交易账本仓储接口 - 定义账本数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .entity import PaymentTransaction, TransactionState


class TransactionRepository(ABC):
    """账本仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """创建账本行；幂等引用冲突时抛出 DuplicateIdempotencyKey"""
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: str) -> Optional[PaymentTransaction]:
        """根据ID获取"""
        pass

    @abstractmethod
    async def get_by_idempotency_reference(self, reference: str) -> Optional[PaymentTransaction]:
        """根据幂等引用获取"""
        pass

    @abstractmethod
    async def get_by_provider_reference(self, provider_reference: str) -> Optional[PaymentTransaction]:
        """根据提供商引用获取"""
        pass

    @abstractmethod
    async def compare_and_set_state(
        self,
        transaction_id: str,
        from_states: Iterable[TransactionState],
        to_state: TransactionState,
        *,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """
        原子状态转换：仅当当前状态属于 from_states 时更新

        返回 True 表示本次调用完成了转换
        """
        pass

    @abstractmethod
    async def set_provider_details(
        self,
        transaction_id: str,
        *,
        provider_reference: Optional[str] = None,
        checkout_url: Optional[str] = None,
    ) -> None:
        """补写提供商引用（仅填充空值）与收银台地址"""
        pass

    @abstractmethod
    async def list_stale(
        self,
        states: Iterable[TransactionState],
        updated_before: datetime,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        """获取长时间停留在非终态的账本行（对账扫描用）"""
        pass
