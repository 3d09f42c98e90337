"""
Subscription billing use-cases: subscribe, change plan, cancel, cycle rollover.

Payment-gated changes are recorded as a pending change keyed by the gating
transaction's idempotency reference. Only the settlement fan-out commits it,
after the ledger row reaches ``completed``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.payments import (
    PlanChangeRequest,
    PlanChangeResult,
    SubmitPayment,
    SubscribeRequest,
)
from application.ports.payment_provider import ProviderRejected, ProviderUnavailable
from application.services.payment_service import PaymentOrchestrator, build_idempotency_reference
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentPurpose
from domain.subscription.entity import (
    BASE_PLAN_KEY,
    Plan,
    PlanChangeKind,
    Subscription,
)
from domain.subscription.service import (
    SubscriptionNotFound,
    commission_rate_for,
    decide_plan_change,
    get_plan,
)


logger = get_logger(__name__)


class BillingService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        orchestrator: PaymentOrchestrator,
        *,
        cycle_days: int = 30,
        upgrade_charge: str = "delta",
        currency: str = "TZS",
        default_commission_rate: Decimal = Decimal("0.05"),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._orchestrator = orchestrator
        self.cycle_days = cycle_days
        self.upgrade_charge = upgrade_charge
        self.currency = currency
        self.default_commission_rate = Decimal(default_commission_rate)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_subscription(self, subscription_id: str) -> Subscription:
        async with self._uow_factory(readonly=True) as uow:
            subscription = await uow.subscription_repository.get_by_id(subscription_id)
            if subscription is None:
                raise SubscriptionNotFound(subscription_id)
            return subscription

    async def commission_rate(self, seller_id: str) -> Decimal:
        async with self._uow_factory(readonly=True) as uow:
            subscription = await uow.subscription_repository.get_by_seller(seller_id)
        return commission_rate_for(subscription, self.default_commission_rate, self._clock())

    async def change_plan(self, subscription_id: str, req: PlanChangeRequest) -> PlanChangeResult:
        target = get_plan(req.plan)
        now = self._clock()
        async with self._uow_factory() as uow:
            subscription = await uow.subscription_repository.get_by_id(subscription_id)
            if subscription is None:
                raise SubscriptionNotFound(subscription_id)
            decision = decide_plan_change(subscription, target, self.upgrade_charge)

            if decision.kind == PlanChangeKind.IMMEDIATE:
                subscription.apply_immediately(target, now)
            elif decision.kind == PlanChangeKind.DEFERRED:
                subscription.schedule(target, now)
            elif subscription.pending_plan == target.key and subscription.pending_reference:
                # Same gated change requested again: reuse the reference so the ledger dedups it
                reference = subscription.pending_reference
            else:
                reference = build_idempotency_reference(PaymentPurpose.SUBSCRIPTION_UPGRADE, subscription.id)
                subscription.await_payment(target, reference, now)
            subscription = await uow.subscription_repository.update(subscription)

        logger.info(
            "subscription_plan_change_decided",
            subscription_id=subscription.id,
            current_plan=subscription.plan,
            target_plan=target.key,
            decision=decision.kind.value,
            charge_amount=decision.charge_amount,
        )
        if decision.kind != PlanChangeKind.PAYMENT_GATED:
            return PlanChangeResult(subscription=subscription, decision=decision.kind.value)

        payment = await self._submit_gated_payment(subscription, target, decision.charge_amount, reference, req)
        return PlanChangeResult(
            subscription=await self.get_subscription(subscription.id),
            decision=decision.kind.value,
            payment=payment,
        )

    async def subscribe(self, req: SubscribeRequest) -> PlanChangeResult:
        """Start billing for a seller; an active existing subscription goes through change_plan."""
        target = get_plan(req.plan)
        now = self._clock()
        async with self._uow_factory() as uow:
            existing = await uow.subscription_repository.get_by_seller(req.seller_id)
        if existing is not None and not existing.is_cancelled:
            return await self.change_plan(existing.id, req)

        reference = None
        async with self._uow_factory() as uow:
            subscription = existing or Subscription(
                id=None,
                seller_id=req.seller_id,
                plan=BASE_PLAN_KEY,
                price_monthly=0,
                created_at=now,
            )
            if target.is_subscription:
                # The paid plan lives only in pending_* until its payment completes
                subscription.begin_unpaid(now)
            else:
                subscription.apply_immediately(target, now)

            repo = uow.subscription_repository
            subscription = await (repo.update(subscription) if subscription.id else repo.create(subscription))
            if target.is_subscription:
                reference = build_idempotency_reference(PaymentPurpose.SUBSCRIPTION_UPGRADE, subscription.id)
                subscription.await_payment(target, reference, now)
                subscription = await repo.update(subscription)

        logger.info(
            "subscription_started",
            subscription_id=subscription.id,
            seller_id=subscription.seller_id,
            plan=target.key,
            status=subscription.status.value,
        )
        if reference is None:
            return PlanChangeResult(subscription=subscription, decision=PlanChangeKind.IMMEDIATE.value)

        payment = await self._submit_gated_payment(subscription, target, target.price_monthly, reference, req)
        return PlanChangeResult(
            subscription=await self.get_subscription(subscription.id),
            decision=PlanChangeKind.PAYMENT_GATED.value,
            payment=payment,
        )

    async def cancel(self, subscription_id: str) -> Subscription:
        now = self._clock()
        async with self._uow_factory() as uow:
            subscription = await uow.subscription_repository.get_by_id(subscription_id)
            if subscription is None:
                raise SubscriptionNotFound(subscription_id)
            if subscription.is_cancelled:
                return subscription
            subscription.cancel(now, self.cycle_days)
            subscription = await uow.subscription_repository.update(subscription)
        logger.info(
            "subscription_cancelled",
            subscription_id=subscription.id,
            expires_at=subscription.expires_at.isoformat() if subscription.expires_at else None,
        )
        return subscription

    async def roll_over(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """Apply scheduled downgrades for subscriptions whose cycle has ended."""
        now = now or self._clock()
        rolled = 0
        async with self._uow_factory() as uow:
            for subscription in await uow.subscription_repository.list_due_for_rollover(now, limit):
                if subscription.roll_over(now, self.cycle_days):
                    await uow.subscription_repository.update(subscription)
                    rolled += 1
                    logger.info(
                        "subscription_rolled_over",
                        subscription_id=subscription.id,
                        plan=subscription.plan,
                        price_monthly=subscription.price_monthly,
                    )
        return rolled

    async def _submit_gated_payment(
        self,
        subscription: Subscription,
        target: Plan,
        amount: int,
        reference: str,
        req: PlanChangeRequest,
    ):
        cmd = SubmitPayment(
            user_id=subscription.seller_id,
            purpose=PaymentPurpose.SUBSCRIPTION_UPGRADE,
            amount=amount,
            currency=self.currency,
            provider_kind=req.provider_kind,
            payer=req.payer,
            linked_entity_id=subscription.id,
            idempotency_reference=reference,
            description=f"Plan change to {target.key}",
        )
        try:
            return await self._orchestrator.submit(cmd)
        except (ProviderUnavailable, ProviderRejected):
            # The failed ledger row already discarded the pending change
            raise
        except BusinessException:
            # Rejected before a ledger row existed
            await self._discard_pending(subscription.id, reference)
            raise

    async def _discard_pending(self, subscription_id: str, reference: str) -> None:
        async with self._uow_factory() as uow:
            subscription = await uow.subscription_repository.get_by_id(subscription_id)
            if subscription is not None and subscription.discard_pending(reference, self._clock()):
                await uow.subscription_repository.update(subscription)
                logger.info("subscription_pending_change_discarded", subscription_id=subscription_id)
