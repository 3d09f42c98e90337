"""
Application service orchestrating payment submission and manual status checks.

This class depends only on the application PaymentProvider port and DTOs.
Provider implementations are provided by infrastructure and must be injected
from the composition root (API/tasks), keeping dependencies one-way.

Submission order matters:
  1. validate amount and payer (no ledger row on validation errors)
  2. create the pending ledger row in its own committed unit of work
  3. call the provider outside any database transaction
  4. record the outcome through the ledger compare-and-swap + settlement fan-out
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from application.dtos.payments import (
    InitiatePayment,
    OrchestrationResult,
    SubmitPayment,
)
from application.ports.payment_provider import (
    PaymentProvider,
    ProviderOutcomeUnknown,
    ProviderRejected,
    ProviderUnavailable,
)
from application.services.settlement_service import SettlementService
from core.logging_config import get_logger
from domain.common.money import validate_amount, validate_currency
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    PURPOSE_PREFIX,
    PaymentPurpose,
    PaymentTransaction,
    ProviderKind,
    TransactionState,
)
from domain.payment.service import DuplicateIdempotencyKey, TransactionLedger


logger = get_logger(__name__)

_last_stamp_ms = 0


def _monotonic_ms() -> int:
    """Wall-clock milliseconds, strictly increasing within the process."""
    global _last_stamp_ms
    now = int(time.time() * 1000)
    _last_stamp_ms = max(now, _last_stamp_ms + 1)
    return _last_stamp_ms


def build_idempotency_reference(purpose: PaymentPurpose, entity_id: str) -> str:
    return f"{PURPOSE_PREFIX[purpose]}-{entity_id}-{_monotonic_ms()}"


def status_hint(transaction: PaymentTransaction) -> str:
    """Terminal states are definitive; everything else means check back later."""
    return transaction.state.value if transaction.is_terminal else TransactionState.PROCESSING.value


class PaymentOrchestrator:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        provider_for: Callable[[ProviderKind], PaymentProvider],
        settlement: SettlementService,
        *,
        callback_base_url: str = "",
    ) -> None:
        self._uow_factory = uow_factory
        self._provider_for = provider_for
        self._settlement = settlement
        self._callback_base_url = callback_base_url.rstrip("/")

    async def submit(self, cmd: SubmitPayment) -> OrchestrationResult:
        validate_amount(cmd.amount)
        currency = validate_currency(cmd.currency)
        provider = self._provider_for(cmd.provider_kind)
        payer = provider.validate_payer(cmd.payer)

        reference = cmd.idempotency_reference or build_idempotency_reference(
            cmd.purpose, cmd.linked_entity_id or cmd.user_id
        )
        try:
            async with self._uow_factory() as uow:
                ledger = TransactionLedger(uow.transaction_repository)
                tx = await ledger.create(
                    user_id=cmd.user_id,
                    amount=cmd.amount,
                    currency=currency,
                    purpose=cmd.purpose,
                    provider_kind=cmd.provider_kind,
                    idempotency_reference=reference,
                    description=cmd.description,
                    linked_entity_id=cmd.linked_entity_id,
                )
        except DuplicateIdempotencyKey:
            existing = await self._get_by_reference(reference)
            logger.info(
                "payment_submit_duplicate",
                idempotency_reference=reference,
                transaction_id=existing.id,
                state=existing.state.value,
            )
            return self._result(existing, duplicate=True)

        logger.info(
            "ledger_row_created",
            transaction_id=tx.id,
            idempotency_reference=reference,
            purpose=tx.purpose.value,
            provider_kind=tx.provider_kind.value,
            amount=tx.amount,
            currency=tx.currency,
        )

        request = InitiatePayment(
            amount=tx.amount,
            currency=tx.currency,
            idempotency_reference=reference,
            purpose=tx.purpose,
            description=tx.description,
            payer=payer,
            return_url=cmd.return_url or self._default_return_url(tx),
            metadata={**(cmd.metadata or {}), "transaction_id": tx.id, "purpose": tx.purpose.value},
        )
        try:
            provider_ref = await provider.initiate(request)
        except ProviderOutcomeUnknown as exc:
            # Money may be moving: leave the row pending for the webhook or the stale sweep
            logger.warning(
                "payment_provider_outcome_unknown",
                transaction_id=tx.id,
                idempotency_reference=reference,
                error=exc.message,
            )
            return self._result(await self.get_transaction(tx.id))
        except (ProviderUnavailable, ProviderRejected) as exc:
            logger.warning(
                "payment_provider_error",
                transaction_id=tx.id,
                idempotency_reference=reference,
                error_type=exc.error_type,
                error=exc.message,
            )
            async with self._uow_factory() as uow:
                await self._settlement.settle(
                    uow,
                    tx.id,
                    [TransactionState.PENDING],
                    TransactionState.FAILED,
                    failure_reason=exc.message,
                )
            raise

        async with self._uow_factory() as uow:
            result = await self._settlement.settle(
                uow,
                tx.id,
                [TransactionState.PENDING],
                TransactionState.PROCESSING,
                provider_reference=provider_ref.provider_reference,
            )
            ledger = TransactionLedger(uow.transaction_repository)
            # A notification may have finalised the row before the provider call returned
            tx = await ledger.attach_provider_reference(
                tx.id,
                provider_ref.provider_reference,
                checkout_url=provider_ref.checkout_url,
            )

        logger.info(
            "payment_submitted",
            transaction_id=tx.id,
            provider_reference=tx.provider_reference,
            state=tx.state.value,
            raced=not result.applied,
        )
        return self._result(tx)

    async def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        async with self._uow_factory(readonly=True) as uow:
            return await TransactionLedger(uow.transaction_repository).get(transaction_id)

    async def check_status(self, transaction_id: str) -> OrchestrationResult:
        """Manual reconciliation: only provider-confirmed statuses move the ledger."""
        tx = await self.get_transaction(transaction_id)
        if tx.is_terminal:
            return self._result(tx)

        provider = self._provider_for(tx.provider_kind)
        status = await provider.check_status(tx.provider_reference or tx.idempotency_reference)
        logger.info(
            "payment_status_checked",
            transaction_id=tx.id,
            provider_reference=status.provider_reference,
            provider_status=status.status,
            raw_status=status.raw_status,
        )
        async with self._uow_factory() as uow:
            result = await self._settlement.settle_provider_status(
                uow,
                tx,
                status.status,
                provider_reference=status.provider_reference,
                reason=status.reason,
            )
        return self._result(result.transaction)

    async def _get_by_reference(self, reference: str) -> PaymentTransaction:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.transaction_repository.get_by_idempotency_reference(reference)

    def _default_return_url(self, tx: PaymentTransaction) -> Optional[str]:
        if tx.provider_kind != ProviderKind.HOSTED or not self._callback_base_url:
            return None
        return f"{self._callback_base_url}/payments/callback?reference={tx.idempotency_reference}"

    @staticmethod
    def _result(tx: PaymentTransaction, *, duplicate: bool = False) -> OrchestrationResult:
        return OrchestrationResult(
            transaction=tx,
            checkout_url=tx.checkout_url,
            duplicate=duplicate,
            status_hint=status_hint(tx),
        )
