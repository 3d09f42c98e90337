"""
交易账本数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""

from sqlalchemy import BigInteger, Column, DateTime, Index, String, Text

from .base import Base, new_id, utcnow


class PaymentTransactionModel(Base):
    """
    账本行数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.PaymentTransaction 中
    """
    __tablename__ = "payment_transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True, comment="发起用户ID")

    # 金额信息（整数最小货币单位）
    amount = Column(BigInteger, nullable=False, comment="金额（最小货币单位）")
    currency = Column(String(3), nullable=False, default="TZS", comment="货币代码 ISO-4217")

    purpose = Column(String(32), nullable=False, comment="用途: order_payment/subscription_upgrade/test_payment/withdrawal")
    provider_kind = Column(String(16), nullable=False, comment="提供商类型: push/hosted")

    idempotency_reference = Column(String(128), nullable=False, unique=True, comment="幂等引用（全局唯一）")
    provider_reference = Column(String(128), nullable=True, index=True, comment="提供商引用")

    state = Column(
        String(16),
        nullable=False,
        default="pending",
        index=True,
        comment="账本状态: pending/processing/completed/failed/cancelled",
    )
    description = Column(Text, nullable=False, default="", comment="描述")
    # 关联实体（订单/订阅/提现），列始终存在
    linked_entity_id = Column(String(64), nullable=True, index=True, comment="关联实体ID")
    failure_reason = Column(Text, nullable=True, comment="失败原因")
    checkout_url = Column(String(500), nullable=True, comment="托管收银台地址")

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="更新时间",
    )

    __table_args__ = (
        Index("ix_payment_transactions_state_updated", "state", "updated_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id={self.id}, reference='{self.idempotency_reference}', "
            f"amount={self.amount}, state='{self.state}')>"
        )
