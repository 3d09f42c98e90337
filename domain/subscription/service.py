"""
订阅计费领域服务 - 计划变更决策表

| 当前 → 目标                          | 决策          |
|--------------------------------------|---------------|
| 任意 → percentage                    | immediate     |
| subscription → subscription（不涨价） | deferred      |
| subscription → subscription（涨价）   | payment_gated |
| percentage → subscription            | payment_gated |
| 未付款 pending → subscription         | payment_gated（全价） |
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .entity import (
    PLAN_CATALOGUE,
    Plan,
    PlanChangeDecision,
    PlanChangeKind,
    Subscription,
)
from domain.common.exceptions import BusinessException, EntityNotFoundException
from shared.codes.payment_codes import PaymentCode


class PlanNotFound(BusinessException):
    def __init__(self, plan_key: str):
        super().__init__(
            code=PaymentCode.PLAN_NOT_FOUND,
            message=f"Unknown plan: {plan_key}",
            error_type="PlanNotFound",
            details={"plan": plan_key},
            field="plan",
        )


class PlanUnchanged(BusinessException):
    def __init__(self, plan_key: str):
        super().__init__(
            code=PaymentCode.PLAN_UNCHANGED,
            message=f"Subscription is already on plan {plan_key}",
            error_type="PlanUnchanged",
            details={"plan": plan_key},
            field="plan",
        )


class SubscriptionNotFound(EntityNotFoundException):
    def __init__(self, identifier: str):
        super().__init__("Subscription", identifier, code=PaymentCode.SUBSCRIPTION_NOT_FOUND)


class SubscriptionCancelled(BusinessException):
    def __init__(self, subscription_id: str):
        super().__init__(
            code=PaymentCode.SUBSCRIPTION_CANCELLED,
            message=f"Subscription {subscription_id} is cancelled",
            error_type="SubscriptionCancelled",
            details={"subscription_id": subscription_id},
        )


def get_plan(plan_key: str) -> Plan:
    plan = PLAN_CATALOGUE.get(plan_key)
    if plan is None:
        raise PlanNotFound(plan_key)
    return plan


def decide_plan_change(
    subscription: Subscription,
    target: Plan,
    upgrade_charge: str = "delta",
) -> PlanChangeDecision:
    """
    根据当前计划与目标计划决定变更方式

    upgrade_charge:
        "delta" - subscription 之间升级只收差价
        "full"  - subscription 之间升级收取目标计划全价
    从 percentage 升级到 subscription 始终收取全价。
    尚未付过款的 pending 订阅一律按 percentage 处理。
    """
    if subscription.is_cancelled:
        raise SubscriptionCancelled(subscription.id or subscription.seller_id)
    if subscription.plan == target.key and subscription.is_paid_up:
        raise PlanUnchanged(target.key)

    if not target.is_subscription:
        return PlanChangeDecision(kind=PlanChangeKind.IMMEDIATE, target=target)

    current = PLAN_CATALOGUE.get(subscription.plan)
    from_subscription = current.is_subscription if current else subscription.plan.startswith("subscription_")
    if not (from_subscription and subscription.is_paid_up):
        return PlanChangeDecision(
            kind=PlanChangeKind.PAYMENT_GATED,
            target=target,
            charge_amount=target.price_monthly,
        )

    current_price = subscription.price_monthly
    if target.price_monthly <= current_price:
        return PlanChangeDecision(kind=PlanChangeKind.DEFERRED, target=target)

    charge = target.price_monthly - current_price if upgrade_charge == "delta" else target.price_monthly
    return PlanChangeDecision(kind=PlanChangeKind.PAYMENT_GATED, target=target, charge_amount=charge)


def commission_rate_for(
    subscription: Optional[Subscription],
    default: Decimal,
    now: Optional[datetime] = None,
) -> Decimal:
    """卖家当前计划对应的佣金比例；无订阅、计划未生效或计划未知时使用默认值"""
    if subscription is None:
        return Decimal(default)
    if not subscription.is_entitled(now or datetime.now(timezone.utc)):
        return Decimal(default)
    plan = PLAN_CATALOGUE.get(subscription.plan)
    return plan.commission_rate if plan else Decimal(default)
