from datetime import timedelta
from decimal import Decimal

import pytest

from domain.subscription.entity import PLAN_CATALOGUE, PlanChangeKind, Subscription, SubscriptionStatus
from domain.subscription.service import (
    PlanNotFound,
    PlanUnchanged,
    SubscriptionCancelled,
    commission_rate_for,
    decide_plan_change,
    get_plan,
)
from fakes import NOW


def _sub(plan: str, status: SubscriptionStatus = SubscriptionStatus.ACTIVE) -> Subscription:
    return Subscription(
        id="sub-1",
        seller_id="seller-1",
        plan=plan,
        price_monthly=PLAN_CATALOGUE[plan].price_monthly,
        status=status,
        expires_at=NOW + timedelta(days=10),
    )


@pytest.mark.parametrize(
    "current,target,kind,charge",
    [
        ("subscription_professional", "percentage_growth", PlanChangeKind.IMMEDIATE, 0),
        ("percentage_basic", "percentage_scale", PlanChangeKind.IMMEDIATE, 0),
        ("subscription_professional", "subscription_starter", PlanChangeKind.DEFERRED, 0),
        ("subscription_starter", "subscription_professional", PlanChangeKind.PAYMENT_GATED, 50000),
        ("percentage_basic", "subscription_starter", PlanChangeKind.PAYMENT_GATED, 25000),
    ],
)
def test_decision_table(current, target, kind, charge):
    decision = decide_plan_change(_sub(current), get_plan(target))
    assert decision.kind == kind
    assert decision.charge_amount == charge


def test_full_upgrade_charge_bills_new_price():
    decision = decide_plan_change(
        _sub("subscription_starter"),
        get_plan("subscription_professional"),
        upgrade_charge="full",
    )
    assert decision.kind == PlanChangeKind.PAYMENT_GATED
    assert decision.charge_amount == 75000


def test_same_plan_is_rejected():
    with pytest.raises(PlanUnchanged):
        decide_plan_change(_sub("subscription_starter"), get_plan("subscription_starter"))


def test_cancelled_subscription_cannot_change_plan():
    with pytest.raises(SubscriptionCancelled):
        decide_plan_change(
            _sub("subscription_starter", SubscriptionStatus.CANCELLED),
            get_plan("subscription_professional"),
        )


def test_unknown_plan():
    with pytest.raises(PlanNotFound):
        get_plan("subscription_platinum")


def test_commission_rate_follows_plan_or_default():
    assert commission_rate_for(_sub("subscription_enterprise"), Decimal("0.05")) == Decimal("0.01")
    assert commission_rate_for(None, Decimal("0.05")) == Decimal("0.05")


def test_roll_over_applies_scheduled_plan_only_after_expiry():
    sub = _sub("subscription_professional")
    sub.schedule(get_plan("subscription_starter"), NOW)
    assert sub.price_monthly == 75000

    assert not sub.roll_over(NOW, 30)
    expiry = sub.expires_at
    assert sub.roll_over(expiry, 30)
    assert sub.plan == "subscription_starter"
    assert sub.price_monthly == 25000
    assert sub.scheduled_plan is None
    assert sub.expires_at == expiry + timedelta(days=30)


def test_cancel_keeps_paid_period():
    sub = _sub("subscription_starter")
    expiry = sub.expires_at
    sub.cancel(NOW, 30)
    assert sub.status == SubscriptionStatus.CANCELLED
    assert sub.expires_at == expiry


def test_never_paid_subscription_is_charged_as_from_percentage():
    sub = _sub("subscription_enterprise", SubscriptionStatus.PENDING)

    decision = decide_plan_change(sub, get_plan("subscription_starter"))
    assert decision.kind == PlanChangeKind.PAYMENT_GATED
    assert decision.charge_amount == 25000

    retry = decide_plan_change(sub, get_plan("subscription_enterprise"))
    assert retry.kind == PlanChangeKind.PAYMENT_GATED
    assert retry.charge_amount == 250000


def test_commission_requires_an_entitled_plan():
    default = Decimal("0.05")
    assert commission_rate_for(_sub("subscription_enterprise", SubscriptionStatus.PENDING), default, NOW) == default

    cancelled = _sub("subscription_enterprise", SubscriptionStatus.CANCELLED)
    assert commission_rate_for(cancelled, default, NOW) == Decimal("0.01")
    assert commission_rate_for(cancelled, default, NOW + timedelta(days=11)) == default


def test_begin_unpaid_keeps_paid_plan_out_of_the_row():
    sub = _sub("subscription_professional", SubscriptionStatus.CANCELLED)
    sub.begin_unpaid(NOW)

    assert sub.plan == "percentage_basic"
    assert sub.price_monthly == 0
    assert sub.status == SubscriptionStatus.PENDING
    assert sub.expires_at is None


def test_cancelling_unpaid_subscription_grants_no_period():
    sub = _sub("percentage_basic", SubscriptionStatus.PENDING)
    sub.expires_at = None
    sub.cancel(NOW, 30)
    assert sub.expires_at is None
    assert not sub.is_entitled(NOW)
