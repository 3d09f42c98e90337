"""
卖家收益与提现数据库模型
"""
from sqlalchemy import BigInteger, Column, DateTime, Index, String, Text

from .base import Base, new_id, utcnow


class SellerEarningModel(Base):
    __tablename__ = "seller_earnings"

    id = Column(String(36), primary_key=True, default=new_id)
    seller_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(36), nullable=False, index=True)
    # 每个订单行只入账一次
    order_item_id = Column(String(36), nullable=False, unique=True)
    amount = Column(BigInteger, nullable=False, comment="毛收入")
    platform_fee = Column(BigInteger, nullable=False, comment="平台佣金")
    net_amount = Column(BigInteger, nullable=False, comment="净收入")
    currency = Column(String(3), nullable=False, default="TZS")
    status = Column(String(16), nullable=False, default="completed")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_seller_earnings_seller_status", "seller_id", "status"),
    )


class WithdrawalRequestModel(Base):
    __tablename__ = "withdrawal_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    seller_id = Column(String(64), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False, comment="申请金额")
    fee = Column(BigInteger, nullable=False, comment="手续费")
    net_amount = Column(BigInteger, nullable=False, comment="实际到账")
    currency = Column(String(3), nullable=False, default="TZS")

    destination_kind = Column(String(16), nullable=False, comment="提供商类型")
    destination_network = Column(String(32), nullable=False, comment="移动网络")
    destination_account = Column(String(32), nullable=False, comment="收款账户（手机号）")

    status = Column(String(16), nullable=False, default="pending", index=True)
    transaction_id = Column(String(36), nullable=True, unique=True, comment="关联账本行")
    provider_reference = Column(String(128), nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_withdrawal_requests_seller_status", "seller_id", "status"),
    )
