"""
Settlement fan-out: the single place where an applied ledger transition turns
into Order / Subscription / SellerEarning / WithdrawalRequest mutations.

Callers pass the TransitionResult from the ledger inside the same unit of work
that performed the transition, so the fan-out commits or rolls back together
with the state change. Results with ``applied=False`` (duplicates, late
notifications on terminal rows) never reach the handlers below.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    NON_TERMINAL_STATES,
    PaymentPurpose,
    PaymentTransaction,
    TransactionState,
    TransitionResult,
)
from domain.payment.service import TransactionLedger
from domain.payout.service import earnings_for_order
from domain.subscription.service import commission_rate_for


logger = get_logger(__name__)

LEDGER_STATE_BY_PROVIDER_STATUS = {
    "successful": TransactionState.COMPLETED,
    "failed": TransactionState.FAILED,
    "cancelled": TransactionState.CANCELLED,
}


class SettlementService:
    def __init__(
        self,
        *,
        cycle_days: int = 30,
        default_commission_rate: Decimal = Decimal("0.05"),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.cycle_days = cycle_days
        self.default_commission_rate = Decimal(default_commission_rate)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def settle(
        self,
        uow: AbstractUnitOfWork,
        transaction_id: str,
        from_states: Iterable[TransactionState],
        to_state: TransactionState,
        *,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> TransitionResult:
        """Ledger CAS followed by fan-out, both inside the caller's unit of work."""
        ledger = TransactionLedger(uow.transaction_repository)
        result = await ledger.transition(
            transaction_id,
            from_states,
            to_state,
            provider_reference=provider_reference,
            failure_reason=failure_reason,
        )
        await self.apply(uow, result)
        return result

    async def settle_provider_status(
        self,
        uow: AbstractUnitOfWork,
        transaction: PaymentTransaction,
        status: str,
        *,
        provider_reference: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """Apply a provider-reported status; `pending` only ever moves pending→processing."""
        if status == "pending":
            if transaction.state != TransactionState.PENDING:
                return TransitionResult(transaction=transaction, applied=False, previous_state=transaction.state)
            return await self.settle(
                uow,
                transaction.id,
                [TransactionState.PENDING],
                TransactionState.PROCESSING,
                provider_reference=provider_reference,
            )
        return await self.settle(
            uow,
            transaction.id,
            NON_TERMINAL_STATES,
            LEDGER_STATE_BY_PROVIDER_STATUS[status],
            provider_reference=provider_reference,
            failure_reason=reason if status != "successful" else None,
        )

    async def apply(self, uow: AbstractUnitOfWork, result: TransitionResult) -> None:
        if not result.applied:
            return
        tx = result.transaction
        if not tx.linked_entity_id:
            logger.info("settlement_skipped_unlinked", transaction_id=tx.id, purpose=tx.purpose.value)
            return

        if tx.purpose == PaymentPurpose.ORDER_PAYMENT:
            if tx.state == TransactionState.COMPLETED:
                await self._settle_order(uow, tx)
        elif tx.purpose == PaymentPurpose.SUBSCRIPTION_UPGRADE:
            await self._settle_subscription(uow, tx)
        elif tx.purpose == PaymentPurpose.WITHDRAWAL:
            await self._settle_withdrawal(uow, tx)
        else:
            logger.info("settlement_no_side_effects", transaction_id=tx.id, purpose=tx.purpose.value)

    async def _settle_order(self, uow: AbstractUnitOfWork, tx: PaymentTransaction) -> None:
        order = await uow.order_repository.get_by_id(tx.linked_entity_id)
        if order is None:
            logger.warning("settlement_order_missing", transaction_id=tx.id, order_id=tx.linked_entity_id)
            return

        if order.mark_paid():
            await uow.order_repository.update_status(order)
            logger.info("order_marked_paid", order_id=order.id, transaction_id=tx.id)

        # Guarded by order_item_id uniqueness as well
        if await uow.earning_repository.exists_for_order(order.id):
            logger.info("earnings_already_credited", order_id=order.id)
            return

        rates = {}
        for seller_id in {item.seller_id for item in order.items}:
            subscription = await uow.subscription_repository.get_by_seller(seller_id)
            rates[seller_id] = commission_rate_for(subscription, self.default_commission_rate, self._clock())

        for earning in earnings_for_order(order, rates):
            saved = await uow.earning_repository.create(earning)
            logger.info(
                "seller_earning_credited",
                earning_id=saved.id,
                seller_id=saved.seller_id,
                order_id=order.id,
                order_item_id=saved.order_item_id,
                amount=saved.amount,
                platform_fee=saved.platform_fee,
                net_amount=saved.net_amount,
            )

    async def _settle_subscription(self, uow: AbstractUnitOfWork, tx: PaymentTransaction) -> None:
        subscription = await uow.subscription_repository.get_by_id(tx.linked_entity_id)
        if subscription is None:
            logger.warning("settlement_subscription_missing", transaction_id=tx.id, subscription_id=tx.linked_entity_id)
            return

        now = self._clock()
        if tx.state == TransactionState.COMPLETED:
            changed = subscription.commit_pending(tx.idempotency_reference, now, self.cycle_days)
            event = "subscription_plan_committed"
        elif tx.state in (TransactionState.FAILED, TransactionState.CANCELLED):
            changed = subscription.discard_pending(tx.idempotency_reference, now)
            event = "subscription_pending_change_discarded"
        else:
            return

        if not changed:
            # A newer plan change superseded this payment
            logger.warning(
                "subscription_pending_reference_mismatch",
                subscription_id=subscription.id,
                transaction_id=tx.id,
                idempotency_reference=tx.idempotency_reference,
                pending_reference=subscription.pending_reference,
            )
            return
        await uow.subscription_repository.update(subscription)
        logger.info(
            event,
            subscription_id=subscription.id,
            plan=subscription.plan,
            status=subscription.status.value,
            expires_at=subscription.expires_at.isoformat() if subscription.expires_at else None,
        )

    async def _settle_withdrawal(self, uow: AbstractUnitOfWork, tx: PaymentTransaction) -> None:
        withdrawal = await uow.withdrawal_repository.get_by_id(tx.linked_entity_id)
        if withdrawal is None:
            logger.warning("settlement_withdrawal_missing", transaction_id=tx.id, withdrawal_id=tx.linked_entity_id)
            return
        if withdrawal.transaction_id is None:
            withdrawal.transaction_id = tx.id
        if withdrawal.follow_ledger(
            tx.state,
            provider_reference=tx.provider_reference,
            error_message=tx.failure_reason,
        ):
            await uow.withdrawal_repository.update(withdrawal)
            logger.info(
                "withdrawal_status_synced",
                withdrawal_id=withdrawal.id,
                status=withdrawal.status.value,
                transaction_id=tx.id,
            )
