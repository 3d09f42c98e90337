"""
Seller payout (withdrawal) use-cases.

Balance check and reservation happen under a per-seller lock: a process-local
asyncio.Lock plus the repository's transaction-scoped database lock. The
pending WithdrawalRequest row is the reservation; a concurrent request for the
same seller sees it in the reserved total and is rejected. Balances are
kept per currency.

When the disbursement outcome is unknown (the provider may have received it),
the withdrawal stays pending and keeps its reservation until the ledger row is
resolved by a webhook or the stale sweep.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Callable

from application.dtos.payments import (
    BalanceView,
    PayerDetails,
    SubmitPayment,
    WithdrawalCommand,
    WithdrawalResult,
)
from application.ports.payment_provider import (
    InvalidPayerHandle,
    PaymentProvider,
    ProviderRejected,
    ProviderUnavailable,
)
from application.services.payment_service import PaymentOrchestrator
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, DomainValidationException
from domain.common.money import validate_currency
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentPurpose, ProviderKind
from domain.payout.entity import (
    RESERVING_WITHDRAWAL_STATES,
    PayoutDestination,
    WithdrawalRequest,
    WithdrawalStatus,
)
from domain.payout.service import InsufficientBalance, InvalidDestination, available_balance, split_fee


logger = get_logger(__name__)


class _SellerLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class PayoutService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        orchestrator: PaymentOrchestrator,
        provider_for: Callable[[ProviderKind], PaymentProvider],
        *,
        fee_rate: Decimal = Decimal("0.02"),
    ) -> None:
        self._uow_factory = uow_factory
        self._orchestrator = orchestrator
        self._provider_for = provider_for
        self.fee_rate = Decimal(fee_rate)
        self._seller_locks: dict[str, _SellerLock] = {}

    async def get_balance(self, seller_id: str, currency: str = "TZS") -> BalanceView:
        currency = validate_currency(currency)
        async with self._uow_factory(readonly=True) as uow:
            return await self._balance(uow, seller_id, currency)

    @asynccontextmanager
    async def _seller_lock(self, seller_id: str) -> AsyncIterator[None]:
        """Process-local lock per seller; the entry is dropped once nobody holds or waits on it."""
        entry = self._seller_locks.get(seller_id)
        if entry is None:
            entry = self._seller_locks[seller_id] = _SellerLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._seller_locks[seller_id]

    async def request_withdrawal(self, cmd: WithdrawalCommand) -> WithdrawalResult:
        destination = self._validate_destination(cmd)
        split = split_fee(cmd.amount, self.fee_rate)

        async with self._seller_lock(cmd.seller_id):
            async with self._uow_factory() as uow:
                await uow.withdrawal_repository.lock_seller(cmd.seller_id)
                balance = await self._balance(uow, cmd.seller_id, cmd.currency)
                if cmd.amount > balance.available:
                    logger.info(
                        "withdrawal_rejected_insufficient_balance",
                        seller_id=cmd.seller_id,
                        requested=cmd.amount,
                        available=balance.available,
                        currency=cmd.currency,
                    )
                    raise InsufficientBalance(cmd.seller_id, cmd.amount, balance.available)
                withdrawal = await uow.withdrawal_repository.create(
                    WithdrawalRequest(
                        id=None,
                        seller_id=cmd.seller_id,
                        amount=split.amount,
                        fee=split.fee,
                        net_amount=split.net_amount,
                        currency=cmd.currency,
                        destination=destination,
                    )
                )

        logger.info(
            "withdrawal_reserved",
            withdrawal_id=withdrawal.id,
            seller_id=withdrawal.seller_id,
            amount=withdrawal.amount,
            fee=withdrawal.fee,
            net_amount=withdrawal.net_amount,
        )

        submit = SubmitPayment(
            user_id=withdrawal.seller_id,
            purpose=PaymentPurpose.WITHDRAWAL,
            amount=withdrawal.net_amount,
            currency=withdrawal.currency,
            provider_kind=destination.provider_kind,
            payer=PayerDetails(phone=destination.account, network=destination.network),
            linked_entity_id=withdrawal.id,
            description=f"Seller payout {withdrawal.id}",
        )
        try:
            payment = await self._orchestrator.submit(submit)
        except (ProviderUnavailable, ProviderRejected):
            # Settlement fan-out already moved the withdrawal to failed
            raise
        except BusinessException as exc:
            # Rejected before a ledger row existed: release the reservation
            await self._release(withdrawal.id, exc.message)
            raise

        withdrawal = await self._get(withdrawal.id)
        return WithdrawalResult(withdrawal=withdrawal, payment=payment)

    def _validate_destination(self, cmd: WithdrawalCommand) -> PayoutDestination:
        if cmd.destination.provider_kind != ProviderKind.PUSH:
            raise InvalidDestination("Payouts are only supported to mobile money accounts")
        provider = self._provider_for(ProviderKind.PUSH)
        try:
            payer = provider.validate_payer(
                PayerDetails(phone=cmd.destination.account, network=cmd.destination.network)
            )
        except (InvalidPayerHandle, DomainValidationException) as exc:
            raise InvalidDestination(exc.message, details=exc.details) from exc
        return PayoutDestination(
            provider_kind=ProviderKind.PUSH,
            network=payer.network,
            account=payer.phone,
        )

    async def _balance(self, uow: AbstractUnitOfWork, seller_id: str, currency: str) -> BalanceView:
        """Balances never mix currencies: earnings and withdrawals are summed per currency."""
        earned = await uow.earning_repository.sum_net_completed(seller_id, currency)
        withdrawals = uow.withdrawal_repository
        withdrawn = await withdrawals.sum_amount(seller_id, currency, [WithdrawalStatus.COMPLETED])
        reserved = await withdrawals.sum_amount(seller_id, currency, RESERVING_WITHDRAWAL_STATES)
        return BalanceView(
            seller_id=seller_id,
            currency=currency,
            earned=earned,
            withdrawn=withdrawn,
            reserved=reserved - withdrawn,
            available=available_balance(earned, reserved),
        )

    async def _release(self, withdrawal_id: str, error_message: str) -> None:
        async with self._uow_factory() as uow:
            withdrawal = await uow.withdrawal_repository.get_by_id(withdrawal_id)
            if withdrawal is None or withdrawal.is_final:
                return
            withdrawal.status = WithdrawalStatus.FAILED
            withdrawal.error_message = error_message
            await uow.withdrawal_repository.update(withdrawal)
        logger.warning("withdrawal_released", withdrawal_id=withdrawal_id, error=error_message)

    async def _get(self, withdrawal_id: str) -> WithdrawalRequest:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.withdrawal_repository.get_by_id(withdrawal_id)
