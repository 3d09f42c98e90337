"""
卖家订阅领域实体 - 计划目录与订阅状态

计划标识格式为 `<pricing_model>_<tier>`，例如 `subscription_starter`、`percentage_growth`。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from domain.payment.entity import ensure_utc


class PricingModel(str, Enum):
    SUBSCRIPTION = "subscription"   # 固定月费 + 较低佣金
    PERCENTAGE = "percentage"       # 无月费，按销售额抽成


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Plan:
    tier: str
    pricing_model: PricingModel
    price_monthly: int
    commission_rate: Decimal

    @property
    def key(self) -> str:
        return f"{self.pricing_model.value}_{self.tier}"

    @property
    def is_subscription(self) -> bool:
        return self.pricing_model == PricingModel.SUBSCRIPTION


PLAN_CATALOGUE: Dict[str, Plan] = {
    plan.key: plan
    for plan in (
        Plan("starter", PricingModel.SUBSCRIPTION, 25000, Decimal("0.05")),
        Plan("professional", PricingModel.SUBSCRIPTION, 75000, Decimal("0.03")),
        Plan("enterprise", PricingModel.SUBSCRIPTION, 250000, Decimal("0.01")),
        Plan("basic", PricingModel.PERCENTAGE, 0, Decimal("0.07")),
        Plan("growth", PricingModel.PERCENTAGE, 0, Decimal("0.10")),
        Plan("scale", PricingModel.PERCENTAGE, 0, Decimal("0.15")),
    )
}

# 首次付费订阅在付款确认前停留的基础计划
BASE_PLAN_KEY = "percentage_basic"


class PlanChangeKind(str, Enum):
    IMMEDIATE = "immediate"            # 直接生效，无需付款
    DEFERRED = "deferred"              # 下个计费周期生效
    PAYMENT_GATED = "payment_gated"    # 付款确认后生效


@dataclass(frozen=True)
class PlanChangeDecision:
    kind: PlanChangeKind
    target: Plan
    charge_amount: int = 0


@dataclass
class Subscription:
    """
    卖家订阅

    业务规则：
    1. pending_* 记录等待付款确认的计划变更，仅在 pending_reference 对应的账本行完成后提交
    2. scheduled_* 记录降级，在当前周期到期时生效
    3. 取消后保留到期时间，已付费周期内仍可使用
    """

    id: Optional[str]
    seller_id: str
    plan: str
    price_monthly: int
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    expires_at: Optional[datetime] = None
    pending_plan: Optional[str] = None
    pending_price: Optional[int] = None
    pending_reference: Optional[str] = None
    scheduled_plan: Optional[str] = None
    scheduled_price: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = SubscriptionStatus(self.status)
        self.expires_at = ensure_utc(self.expires_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def is_cancelled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELLED

    @property
    def is_paid_up(self) -> bool:
        """计划来自已确认的付款或立即生效的变更，而不是等待首笔付款"""
        return self.status != SubscriptionStatus.PENDING

    @property
    def pricing_model(self) -> PricingModel:
        return PricingModel(self.plan.split("_", 1)[0])

    def is_entitled(self, now: datetime) -> bool:
        """当前计划的权益是否生效：active，或已取消但仍在已付费周期内"""
        if self.status == SubscriptionStatus.ACTIVE:
            return True
        if self.is_cancelled:
            return self.expires_at is not None and self.expires_at > now
        return False

    def _touch(self, now: Optional[datetime] = None) -> None:
        self.updated_at = now or datetime.now(timezone.utc)

    def begin_unpaid(self, now: Optional[datetime] = None) -> None:
        """业务规则：首次订阅付费计划时停留在基础计划，付款确认前不产生任何计划权益"""
        base = PLAN_CATALOGUE[BASE_PLAN_KEY]
        self.plan = base.key
        self.price_monthly = base.price_monthly
        self.status = SubscriptionStatus.PENDING
        self.expires_at = None
        self.scheduled_plan = None
        self.scheduled_price = None
        self._touch(now)

    def apply_immediately(self, plan: Plan, now: Optional[datetime] = None) -> None:
        """业务规则：切换到按比例抽成计划，立即生效，到期时间不变"""
        self.plan = plan.key
        self.price_monthly = plan.price_monthly
        self.status = SubscriptionStatus.ACTIVE
        self.scheduled_plan = None
        self.scheduled_price = None
        self._touch(now)

    def schedule(self, plan: Plan, now: Optional[datetime] = None) -> None:
        """业务规则：降级在当前周期结束时生效，当前价格保持不变"""
        self.scheduled_plan = plan.key
        self.scheduled_price = plan.price_monthly
        self._touch(now)

    def await_payment(self, plan: Plan, reference: str, now: Optional[datetime] = None) -> None:
        """记录等待付款确认的变更，当前计划不变"""
        self.pending_plan = plan.key
        self.pending_price = plan.price_monthly
        self.pending_reference = reference
        self._touch(now)

    def commit_pending(self, reference: str, now: datetime, cycle_days: int) -> bool:
        """付款确认后提交变更；引用不匹配时不做任何修改"""
        if not self.pending_plan or self.pending_reference != reference:
            return False
        self.plan = self.pending_plan
        self.price_monthly = self.pending_price or 0
        self.status = SubscriptionStatus.ACTIVE
        self.expires_at = now + timedelta(days=cycle_days)
        self.pending_plan = None
        self.pending_price = None
        self.pending_reference = None
        self.scheduled_plan = None
        self.scheduled_price = None
        self._touch(now)
        return True

    def discard_pending(self, reference: str, now: Optional[datetime] = None) -> bool:
        if not self.pending_plan or self.pending_reference != reference:
            return False
        self.pending_plan = None
        self.pending_price = None
        self.pending_reference = None
        self._touch(now)
        return True

    def cancel(self, now: datetime, cycle_days: int) -> None:
        """业务规则：立即标记取消，保留（或补齐）到期时间；从未付款的订阅不补齐"""
        if self.expires_at is None and self.is_paid_up:
            self.expires_at = now + timedelta(days=cycle_days)
        self.status = SubscriptionStatus.CANCELLED
        self.scheduled_plan = None
        self.scheduled_price = None
        self._touch(now)

    def roll_over(self, now: datetime, cycle_days: int) -> bool:
        """周期到期时应用已排期的降级"""
        if not self.scheduled_plan or self.is_cancelled:
            return False
        if self.expires_at is None or self.expires_at > now:
            return False
        self.plan = self.scheduled_plan
        self.price_monthly = self.scheduled_price or 0
        self.scheduled_plan = None
        self.scheduled_price = None
        self.expires_at = now + timedelta(days=cycle_days)
        self._touch(now)
        return True
