"""
Subscription billing routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from application.dtos.payments import (
    PlanChangeRequest,
    PlanChangeView,
    SubscribeRequest,
    SubscriptionView,
)
from application.services.billing_service import BillingService
from api.dependencies import get_billing_service
from core.response import success_response


router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.post("", summary="Subscribe a seller to a plan")
async def subscribe(payload: SubscribeRequest, billing: BillingService = Depends(get_billing_service)):
    result = await billing.subscribe(payload)
    return success_response(data=PlanChangeView.from_result(result).model_dump(mode="json"))


@router.get("/{subscription_id}", summary="Get subscription")
async def get_subscription(subscription_id: str, billing: BillingService = Depends(get_billing_service)):
    subscription = await billing.get_subscription(subscription_id)
    return success_response(data=SubscriptionView.model_validate(subscription).model_dump(mode="json"))


@router.post("/{subscription_id}/plan", summary="Change plan")
async def change_plan(
    subscription_id: str,
    payload: PlanChangeRequest,
    billing: BillingService = Depends(get_billing_service),
):
    result = await billing.change_plan(subscription_id, payload)
    return success_response(
        data=PlanChangeView.from_result(result).model_dump(mode="json"),
        message=f"Plan change {result.decision}",
    )


@router.post("/{subscription_id}/cancel", summary="Cancel subscription")
async def cancel_subscription(subscription_id: str, billing: BillingService = Depends(get_billing_service)):
    subscription = await billing.cancel(subscription_id)
    return success_response(
        data=SubscriptionView.model_validate(subscription).model_dump(mode="json"),
        message="Subscription cancelled",
    )
