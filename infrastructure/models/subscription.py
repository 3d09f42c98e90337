"""
卖家订阅数据库模型
"""
from sqlalchemy import BigInteger, Column, DateTime, Index, String

from .base import Base, new_id, utcnow


class SubscriptionModel(Base):
    __tablename__ = "seller_subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    seller_id = Column(String(64), nullable=False, unique=True, comment="卖家ID（每个卖家一条）")
    plan = Column(String(64), nullable=False, comment="计划标识 <pricing_model>_<tier>")
    price_monthly = Column(BigInteger, nullable=False, default=0, comment="月费（最小货币单位）")
    status = Column(String(16), nullable=False, default="active", comment="状态: active/pending/cancelled")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="当前周期到期时间")

    # 等待付款确认的变更
    pending_plan = Column(String(64), nullable=True)
    pending_price = Column(BigInteger, nullable=True)
    pending_reference = Column(String(128), nullable=True, comment="付款账本行的幂等引用")

    # 下个周期生效的降级
    scheduled_plan = Column(String(64), nullable=True)
    scheduled_price = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_seller_subscriptions_rollover", "scheduled_plan", "expires_at"),
    )
