"""
订阅仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.subscription.entity import Subscription
from domain.subscription.repository import SubscriptionRepository
from domain.subscription.service import SubscriptionNotFound
from infrastructure.models.subscription import SubscriptionModel


_MUTABLE_FIELDS = (
    "plan",
    "price_monthly",
    "expires_at",
    "pending_plan",
    "pending_price",
    "pending_reference",
    "scheduled_plan",
    "scheduled_price",
)


class SQLAlchemySubscriptionRepository(SubscriptionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SubscriptionModel) -> Subscription:
        return Subscription(
            id=model.id,
            seller_id=model.seller_id,
            plan=model.plan,
            price_monthly=int(model.price_monthly or 0),
            status=model.status,
            expires_at=model.expires_at,
            pending_plan=model.pending_plan,
            pending_price=model.pending_price,
            pending_reference=model.pending_reference,
            scheduled_plan=model.scheduled_plan,
            scheduled_price=model.scheduled_price,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _apply(self, model: SubscriptionModel, entity: Subscription) -> None:
        for name in _MUTABLE_FIELDS:
            setattr(model, name, getattr(entity, name))
        model.status = entity.status.value
        if entity.updated_at:
            model.updated_at = entity.updated_at

    async def create(self, subscription: Subscription) -> Subscription:
        model = SubscriptionModel(seller_id=subscription.seller_id)
        if subscription.id:
            model.id = subscription.id
        self._apply(model, subscription)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        model = await self.session.get(SubscriptionModel, subscription_id, populate_existing=True)
        return self._to_entity(model) if model else None

    async def get_by_seller(self, seller_id: str) -> Optional[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel).where(SubscriptionModel.seller_id == seller_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, subscription: Subscription) -> Subscription:
        model = await self.session.get(SubscriptionModel, subscription.id)
        if model is None:
            raise SubscriptionNotFound(subscription.id)
        self._apply(model, subscription)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def list_due_for_rollover(self, now: datetime, limit: int = 100) -> List[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel)
            .where(
                SubscriptionModel.scheduled_plan.is_not(None),
                SubscriptionModel.expires_at.is_not(None),
                SubscriptionModel.expires_at <= now,
                SubscriptionModel.status != "cancelled",
            )
            .order_by(SubscriptionModel.expires_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
