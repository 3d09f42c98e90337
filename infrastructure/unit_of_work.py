"""SQLAlchemy Unit of Work 实现

一个 UoW 对应一个数据库事务：账本 CAS、订阅与提现的写入在同一事务内提交或回滚。
"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.payment_repository import SQLAlchemyTransactionRepository
from infrastructure.repositories.payout_repository import (
    SQLAlchemyEarningRepository,
    SQLAlchemyWithdrawalRepository,
)
from infrastructure.repositories.subscription_repository import SQLAlchemySubscriptionRepository


_REPOSITORIES = {
    "transaction_repository": SQLAlchemyTransactionRepository,
    "order_repository": SQLAlchemyOrderRepository,
    "subscription_repository": SQLAlchemySubscriptionRepository,
    "earning_repository": SQLAlchemyEarningRepository,
    "withdrawal_repository": SQLAlchemyWithdrawalRepository,
}


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session
        self._transaction: Optional[AsyncSessionTransaction] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        for name, repository_cls in _REPOSITORIES.items():
            setattr(self, name, repository_cls(self.session))
        # 只读模式不显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # commit 失败时事务可能仍处于活动状态
            if self._transaction is not None and self._transaction.is_active:
                await self._transaction.rollback()
            self._transaction = None
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            for name in _REPOSITORIES:
                setattr(self, name, None)

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
