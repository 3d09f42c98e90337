"""
收益与提现仓储实现
"""
from typing import Iterable, Optional

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import ProviderKind
from domain.payout.entity import (
    EarningStatus,
    PayoutDestination,
    SellerEarning,
    WithdrawalRequest,
    WithdrawalStatus,
)
from domain.payout.repository import EarningRepository, WithdrawalRepository
from infrastructure.models.payout import SellerEarningModel, WithdrawalRequestModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyEarningRepository(EarningRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SellerEarningModel) -> SellerEarning:
        return SellerEarning(
            id=model.id,
            seller_id=model.seller_id,
            order_id=model.order_id,
            order_item_id=model.order_item_id,
            amount=int(model.amount),
            platform_fee=int(model.platform_fee),
            net_amount=int(model.net_amount),
            currency=model.currency,
            status=model.status,
            created_at=model.created_at,
        )

    async def create(self, earning: SellerEarning) -> SellerEarning:
        result = await self.session.execute(
            select(SellerEarningModel).where(SellerEarningModel.order_item_id == earning.order_item_id)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            logger.info("earning_already_exists", order_item_id=earning.order_item_id)
            return self._to_entity(existing)

        model = SellerEarningModel(
            seller_id=earning.seller_id,
            order_id=earning.order_id,
            order_item_id=earning.order_item_id,
            amount=earning.amount,
            platform_fee=earning.platform_fee,
            net_amount=earning.net_amount,
            currency=earning.currency,
            status=earning.status.value,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def exists_for_order(self, order_id: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(SellerEarningModel).where(SellerEarningModel.order_id == order_id)
        )
        return int(result.scalar_one()) > 0

    async def sum_net_completed(self, seller_id: str, currency: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(SellerEarningModel.net_amount), 0)).where(
                SellerEarningModel.seller_id == seller_id,
                SellerEarningModel.currency == currency,
                SellerEarningModel.status == EarningStatus.COMPLETED.value,
            )
        )
        return int(result.scalar_one())


class SQLAlchemyWithdrawalRepository(WithdrawalRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WithdrawalRequestModel) -> WithdrawalRequest:
        return WithdrawalRequest(
            id=model.id,
            seller_id=model.seller_id,
            amount=int(model.amount),
            fee=int(model.fee),
            net_amount=int(model.net_amount),
            currency=model.currency,
            destination=PayoutDestination(
                provider_kind=ProviderKind(model.destination_kind),
                network=model.destination_network,
                account=model.destination_account,
            ),
            status=model.status,
            transaction_id=model.transaction_id,
            provider_reference=model.provider_reference,
            error_message=model.error_message,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def lock_seller(self, seller_id: str) -> None:
        # PostgreSQL: 事务级 advisory lock，提交或回滚时自动释放
        if self.session.bind.dialect.name != "postgresql":
            return
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"withdrawal:{seller_id}"},
        )

    async def create(self, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
        model = WithdrawalRequestModel(
            seller_id=withdrawal.seller_id,
            amount=withdrawal.amount,
            fee=withdrawal.fee,
            net_amount=withdrawal.net_amount,
            currency=withdrawal.currency,
            destination_kind=withdrawal.destination.provider_kind.value,
            destination_network=withdrawal.destination.network,
            destination_account=withdrawal.destination.account,
            status=withdrawal.status.value,
            transaction_id=withdrawal.transaction_id,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, withdrawal_id: str) -> Optional[WithdrawalRequest]:
        model = await self.session.get(WithdrawalRequestModel, withdrawal_id, populate_existing=True)
        return self._to_entity(model) if model else None

    async def update(self, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
        model = await self.session.get(WithdrawalRequestModel, withdrawal.id)
        model.status = withdrawal.status.value
        model.transaction_id = withdrawal.transaction_id
        model.provider_reference = withdrawal.provider_reference
        model.error_message = withdrawal.error_message
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def sum_amount(self, seller_id: str, currency: str, statuses: Iterable[WithdrawalStatus]) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(WithdrawalRequestModel.amount), 0)).where(
                WithdrawalRequestModel.seller_id == seller_id,
                WithdrawalRequestModel.currency == currency,
                WithdrawalRequestModel.status.in_([WithdrawalStatus(s).value for s in statuses]),
            )
        )
        return int(result.scalar_one())
