"""
订单仓储实现
"""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from domain.order.entity import Order, OrderItem
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel


class SQLAlchemyOrderRepository(OrderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            buyer_id=model.buyer_id,
            total_amount=int(model.total_amount),
            currency=model.currency,
            status=model.status,
            items=[
                OrderItem(
                    id=item.id,
                    order_id=item.order_id,
                    seller_id=item.seller_id,
                    unit_price=int(item.unit_price),
                    quantity=int(item.quantity),
                )
                for item in model.items
            ],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, order: Order) -> Order:
        model = OrderModel(
            buyer_id=order.buyer_id,
            total_amount=order.total_amount,
            currency=order.currency,
            status=order.status.value,
            items=[
                OrderItemModel(seller_id=i.seller_id, unit_price=i.unit_price, quantity=i.quantity)
                for i in order.items
            ],
        )
        if order.id:
            model.id = order.id
        self.session.add(model)
        await self.session.flush()
        return await self.get_by_id(model.id)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .options(selectinload(OrderModel.items))
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update_status(self, order: Order) -> Order:
        await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id)
            .values(status=order.status.value, updated_at=order.updated_at)
            .execution_options(synchronize_session=False)
        )
        return order
