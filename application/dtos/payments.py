"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator

from domain.common.money import CURRENCY_EXPONENTS
from domain.payment.entity import PaymentPurpose, PaymentTransaction, ProviderKind, TransactionState
from domain.payout.entity import WithdrawalRequest, WithdrawalStatus
from domain.subscription.entity import Subscription, SubscriptionStatus


ProviderStatusValue = Literal["pending", "successful", "failed", "cancelled"]


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in CURRENCY_EXPONENTS:
        raise ValueError("unsupported currency")
    return u


class Customer(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class PayerDetails(BaseModel):
    """Payer handle for push payments, customer for hosted checkout."""
    phone: Optional[str] = None
    network: Optional[str] = None
    customer: Optional[Customer] = None


class SubmitPayment(BaseModel):
    user_id: str
    purpose: PaymentPurpose
    amount: int = Field(gt=0, description="Integer minor units")
    currency: str = Field(default="TZS")
    provider_kind: ProviderKind
    payer: PayerDetails = Field(default_factory=PayerDetails)
    linked_entity_id: Optional[str] = None
    idempotency_reference: Optional[str] = None
    description: str = ""
    return_url: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class InitiatePayment(BaseModel):
    """What an adapter needs to start a collection or a payout."""
    amount: int
    currency: str
    idempotency_reference: str
    purpose: PaymentPurpose
    description: str = ""
    payer: PayerDetails = Field(default_factory=PayerDetails)
    return_url: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class ProviderReference(BaseModel):
    provider_reference: str
    checkout_url: Optional[str] = None


class ProviderStatus(BaseModel):
    provider_reference: str
    status: ProviderStatusValue
    raw_status: Optional[str] = None
    amount: Optional[int] = None
    reason: Optional[str] = None


class WebhookNotification(BaseModel):
    provider_kind: ProviderKind
    status: ProviderStatusValue
    provider_reference: Optional[str] = None
    idempotency_reference: Optional[str] = None
    raw_status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    reason: Optional[str] = None
    occurred_at: Optional[datetime] = None
    # raw payload for traceability
    data: dict[str, Any] = Field(default_factory=dict)


class OrchestrationResult(BaseModel):
    transaction: PaymentTransaction
    checkout_url: Optional[str] = None
    duplicate: bool = False
    # "processing" means check back later; terminal states are definitive
    status_hint: str

    model_config = ConfigDict(arbitrary_types_allowed=True)


class WebhookOutcome(BaseModel):
    processed: bool
    reason: Optional[str] = None
    transaction_id: Optional[str] = None
    state: Optional[str] = None
    applied: bool = False


class PlanChangeRequest(BaseModel):
    plan: str
    payer: PayerDetails = Field(default_factory=PayerDetails)
    provider_kind: ProviderKind = ProviderKind.PUSH


class SubscribeRequest(PlanChangeRequest):
    seller_id: str


class PlanChangeResult(BaseModel):
    subscription: Subscription
    decision: str
    payment: Optional[OrchestrationResult] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class PayoutDestinationIn(BaseModel):
    provider_kind: ProviderKind = ProviderKind.PUSH
    network: str
    account: str


class WithdrawalCommand(BaseModel):
    seller_id: str
    amount: int = Field(gt=0)
    destination: PayoutDestinationIn
    currency: str = Field(default="TZS")

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class WithdrawalResult(BaseModel):
    withdrawal: WithdrawalRequest
    payment: Optional[OrchestrationResult] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class BalanceView(BaseModel):
    seller_id: str
    currency: str
    earned: int
    withdrawn: int
    reserved: int
    available: int


# --- read models returned by the API -------------------------------------


class TransactionView(BaseModel):
    id: str
    user_id: str
    amount: int
    currency: str
    purpose: PaymentPurpose
    provider_kind: ProviderKind
    idempotency_reference: str
    state: TransactionState
    provider_reference: Optional[str] = None
    linked_entity_id: Optional[str] = None
    failure_reason: Optional[str] = None
    checkout_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentView(BaseModel):
    transaction: TransactionView
    checkout_url: Optional[str] = None
    duplicate: bool = False
    status_hint: str

    @classmethod
    def from_result(cls, result: OrchestrationResult) -> "PaymentView":
        return cls(
            transaction=TransactionView.model_validate(result.transaction),
            checkout_url=result.checkout_url,
            duplicate=result.duplicate,
            status_hint=result.status_hint,
        )


class SubscriptionView(BaseModel):
    id: str
    seller_id: str
    plan: str
    price_monthly: int
    status: SubscriptionStatus
    expires_at: Optional[datetime] = None
    pending_plan: Optional[str] = None
    scheduled_plan: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PlanChangeView(BaseModel):
    subscription: SubscriptionView
    decision: str
    payment: Optional[PaymentView] = None

    @classmethod
    def from_result(cls, result: PlanChangeResult) -> "PlanChangeView":
        return cls(
            subscription=SubscriptionView.model_validate(result.subscription),
            decision=result.decision,
            payment=PaymentView.from_result(result.payment) if result.payment else None,
        )


class WithdrawalView(BaseModel):
    id: str
    seller_id: str
    amount: int
    fee: int
    net_amount: int
    currency: str
    status: WithdrawalStatus
    transaction_id: Optional[str] = None
    provider_reference: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WithdrawalResultView(BaseModel):
    withdrawal: WithdrawalView
    payment: Optional[PaymentView] = None

    @classmethod
    def from_result(cls, result: WithdrawalResult) -> "WithdrawalResultView":
        return cls(
            withdrawal=WithdrawalView.model_validate(result.withdrawal),
            payment=PaymentView.from_result(result.payment) if result.payment else None,
        )
