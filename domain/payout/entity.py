"""
卖家收益与提现领域实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.common.money import validate_amount
from domain.payment.entity import ProviderKind, TransactionState, ensure_utc


class EarningStatus(str, Enum):
    COMPLETED = "completed"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# 计入可用余额预留的提现状态
RESERVING_WITHDRAWAL_STATES = frozenset({
    WithdrawalStatus.PENDING,
    WithdrawalStatus.PROCESSING,
    WithdrawalStatus.COMPLETED,
})

# 账本状态 → 提现状态（同步推进）
WITHDRAWAL_STATUS_BY_LEDGER_STATE = {
    TransactionState.PROCESSING: WithdrawalStatus.PROCESSING,
    TransactionState.COMPLETED: WithdrawalStatus.COMPLETED,
    TransactionState.FAILED: WithdrawalStatus.FAILED,
    TransactionState.CANCELLED: WithdrawalStatus.CANCELLED,
}


@dataclass
class SellerEarning:
    """每个已支付订单行对应一条收益：net_amount + platform_fee == amount"""

    id: Optional[str]
    seller_id: str
    order_id: str
    order_item_id: str
    amount: int
    platform_fee: int
    net_amount: int
    currency: str = "TZS"
    status: EarningStatus = EarningStatus.COMPLETED
    created_at: Optional[datetime] = None

    def __post_init__(self):
        validate_amount(self.amount)
        if self.platform_fee < 0 or self.net_amount + self.platform_fee != self.amount:
            raise DomainValidationException(
                "Earning split must satisfy net_amount + platform_fee == amount",
                field="platform_fee",
                details={"amount": self.amount, "platform_fee": self.platform_fee, "net_amount": self.net_amount},
            )
        self.status = EarningStatus(self.status)
        self.created_at = ensure_utc(self.created_at)


@dataclass(frozen=True)
class PayoutDestination:
    """提现目的地：提供商类型 + 网络 + 账户（手机号）"""

    provider_kind: ProviderKind
    network: str
    account: str


@dataclass
class WithdrawalRequest:
    id: Optional[str]
    seller_id: str
    amount: int
    fee: int
    net_amount: int
    currency: str
    destination: PayoutDestination
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    transaction_id: Optional[str] = None
    provider_reference: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        validate_amount(self.amount)
        if self.fee < 0 or self.net_amount + self.fee != self.amount:
            raise DomainValidationException(
                "Withdrawal split must satisfy net_amount + fee == amount",
                field="fee",
            )
        self.status = WithdrawalStatus(self.status)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def is_final(self) -> bool:
        return self.status in (WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED, WithdrawalStatus.CANCELLED)

    def follow_ledger(
        self,
        state: TransactionState,
        *,
        provider_reference: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """与账本状态同步；终态提现不再变化"""
        target = WITHDRAWAL_STATUS_BY_LEDGER_STATE.get(state)
        if target is None or self.is_final or self.status == target:
            return False
        self.status = target
        if provider_reference and not self.provider_reference:
            self.provider_reference = provider_reference
        if target == WithdrawalStatus.FAILED:
            self.error_message = error_message or self.error_message
        self.updated_at = datetime.now(timezone.utc)
        return True
