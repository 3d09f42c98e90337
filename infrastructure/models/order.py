"""
订单数据库模型
"""
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .base import Base, new_id, utcnow


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    buyer_id = Column(String(64), nullable=False, index=True, comment="买家ID")
    total_amount = Column(BigInteger, nullable=False, comment="订单总额（最小货币单位）")
    currency = Column(String(3), nullable=False, default="TZS")
    status = Column(String(16), nullable=False, default="pending", index=True, comment="订单状态")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False, index=True, comment="卖家ID")
    unit_price = Column(BigInteger, nullable=False, comment="成交单价")
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("OrderModel", back_populates="items")
