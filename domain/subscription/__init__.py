"""Subscription domain exports."""
from .entity import (
    PLAN_CATALOGUE,
    Plan,
    PlanChangeDecision,
    PlanChangeKind,
    PricingModel,
    Subscription,
    SubscriptionStatus,
)
from .repository import SubscriptionRepository

__all__ = [
    "PLAN_CATALOGUE",
    "Plan",
    "PlanChangeDecision",
    "PlanChangeKind",
    "PricingModel",
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionRepository",
]
