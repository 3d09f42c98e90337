"""
支付领域实体 - 交易账本行（PaymentTransaction）

账本是"资金是否发生移动"的唯一事实来源：
1. idempotency_reference 全局唯一，用于重试去重与回调匹配
2. 状态单调前进：pending → processing → {completed | failed | cancelled}
3. completed / failed / cancelled 为终态，永不回退
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from domain.common.exceptions import DomainValidationException
from domain.common.money import validate_amount, validate_currency


class TransactionState(str, Enum):
    """账本状态枚举"""
    PENDING = "pending"          # 已落库，尚未得到提供商响应
    PROCESSING = "processing"    # 提供商已受理，等待付款人/回调
    COMPLETED = "completed"      # 提供商确认成功
    FAILED = "failed"            # 提供商拒绝或确认失败
    CANCELLED = "cancelled"      # 付款人取消


TERMINAL_STATES = frozenset({
    TransactionState.COMPLETED,
    TransactionState.FAILED,
    TransactionState.CANCELLED,
})

NON_TERMINAL_STATES = frozenset({TransactionState.PENDING, TransactionState.PROCESSING})

# 允许的状态转换
ALLOWED_TRANSITIONS: dict[TransactionState, frozenset[TransactionState]] = {
    TransactionState.PENDING: frozenset({
        TransactionState.PROCESSING,
        TransactionState.COMPLETED,
        TransactionState.FAILED,
        TransactionState.CANCELLED,
    }),
    TransactionState.PROCESSING: frozenset({
        TransactionState.COMPLETED,
        TransactionState.FAILED,
        TransactionState.CANCELLED,
    }),
    TransactionState.COMPLETED: frozenset(),
    TransactionState.FAILED: frozenset(),
    TransactionState.CANCELLED: frozenset(),
}


class PaymentPurpose(str, Enum):
    """支付用途"""
    ORDER_PAYMENT = "order_payment"
    SUBSCRIPTION_UPGRADE = "subscription_upgrade"
    TEST_PAYMENT = "test_payment"
    WITHDRAWAL = "withdrawal"


# 幂等引用前缀
PURPOSE_PREFIX = {
    PaymentPurpose.ORDER_PAYMENT: "ORD",
    PaymentPurpose.SUBSCRIPTION_UPGRADE: "SUB",
    PaymentPurpose.TEST_PAYMENT: "TST",
    PaymentPurpose.WITHDRAWAL: "WDR",
}


class ProviderKind(str, Enum):
    """提供商类型"""
    PUSH = "push"        # 移动钱包推送（USSD push）
    HOSTED = "hosted"    # 托管收银台跳转


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_transition(from_states: Iterable[TransactionState], to_state: TransactionState) -> None:
    """业务规则：from_states 中每个状态都必须能合法转换到 to_state"""
    states = list(from_states)
    if not states:
        raise DomainValidationException("from_states must not be empty", field="from_states")
    for state in states:
        if to_state not in ALLOWED_TRANSITIONS[state]:
            raise DomainValidationException(
                f"Transition {state.value} -> {to_state.value} is not allowed",
                field="to_state",
                details={"from": state.value, "to": to_state.value},
            )


@dataclass
class PaymentTransaction:
    """
    交易账本行 - 一次支付尝试的完整生命周期

    业务规则：
    1. 金额为整数最小货币单位，必须大于0
    2. 货币代码为受支持的 ISO-4217 代码
    3. 状态转换只能通过账本的 compare-and-swap 完成
    """

    id: Optional[str]
    user_id: str
    amount: int
    currency: str
    purpose: PaymentPurpose
    provider_kind: ProviderKind
    idempotency_reference: str
    state: TransactionState = TransactionState.PENDING
    provider_reference: Optional[str] = None
    description: str = ""
    linked_entity_id: Optional[str] = None
    failure_reason: Optional[str] = None
    checkout_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        validate_amount(self.amount)
        self.currency = validate_currency(self.currency)
        if not self.idempotency_reference:
            raise DomainValidationException("idempotency_reference is required", field="idempotency_reference")
        self.purpose = PaymentPurpose(self.purpose)
        self.provider_kind = ProviderKind(self.provider_kind)
        self.state = TransactionState(self.state)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_completed(self) -> bool:
        return self.state == TransactionState.COMPLETED

    def can_transition_to(self, to_state: TransactionState) -> bool:
        return to_state in ALLOWED_TRANSITIONS[self.state]


@dataclass
class TransitionResult:
    """账本状态转换结果：applied=False 表示幂等空操作"""

    transaction: PaymentTransaction
    applied: bool
    previous_state: TransactionState
