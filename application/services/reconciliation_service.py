"""
Reconciliation of asynchronous provider notifications and stale ledger rows.

Webhooks, manual status checks and the scheduled sweep all converge on the
same ledger compare-and-swap (via SettlementService), so whichever actor
observes a terminal provider status first applies it and the rest no-op.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from application.dtos.payments import WebhookNotification, WebhookOutcome
from application.ports.payment_provider import (
    InvalidSignature,
    PaymentProvider,
    PaymentProviderError,
)
from application.services.payment_service import PaymentOrchestrator
from application.services.settlement_service import SettlementService
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import NON_TERMINAL_STATES, PaymentTransaction, ProviderKind
from domain.payment.service import UnknownTransaction


logger = get_logger(__name__)


class ReconciliationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        provider_for: Callable[[ProviderKind], PaymentProvider],
        settlement: SettlementService,
        orchestrator: PaymentOrchestrator,
        *,
        amount_tolerance: int = 1,
    ) -> None:
        self._uow_factory = uow_factory
        self._provider_for = provider_for
        self._settlement = settlement
        self._orchestrator = orchestrator
        self._amount_tolerance = amount_tolerance

    async def handle_webhook(
        self,
        provider_kind: ProviderKind,
        headers: Mapping[str, Any],
        body: bytes,
    ) -> WebhookOutcome:
        """Verify, parse and apply a provider notification.

        Unverifiable, malformed or unknown notifications are logged and
        acknowledged without touching any state.
        """
        provider = self._provider_for(provider_kind)
        try:
            notification = provider.parse_webhook(headers, body)
        except InvalidSignature as exc:
            logger.warning("webhook_invalid_signature", provider_kind=provider_kind.value, error=exc.message)
            return WebhookOutcome(processed=False, reason="invalid_signature")
        except DomainValidationException as exc:
            logger.warning("webhook_malformed_payload", provider_kind=provider_kind.value, error=exc.message)
            return WebhookOutcome(processed=False, reason="malformed_payload")

        try:
            return await self.process(notification)
        except UnknownTransaction as exc:
            logger.warning(
                "webhook_unknown_transaction",
                provider_kind=provider_kind.value,
                provider_reference=notification.provider_reference,
                idempotency_reference=notification.idempotency_reference,
                error=exc.message,
            )
            return WebhookOutcome(processed=False, reason="unknown_transaction")

    async def process(self, notification: WebhookNotification) -> WebhookOutcome:
        """Apply a verified notification; ledger CAS and fan-out share one unit of work."""
        async with self._uow_factory() as uow:
            tx = await self._locate(uow, notification)
            if notification.amount is not None and abs(notification.amount - tx.amount) > self._amount_tolerance:
                logger.warning(
                    "webhook_amount_mismatch",
                    transaction_id=tx.id,
                    expected=tx.amount,
                    received=notification.amount,
                )
                return WebhookOutcome(
                    processed=False,
                    reason="amount_mismatch",
                    transaction_id=tx.id,
                    state=tx.state.value,
                )

            result = await self._settlement.settle_provider_status(
                uow,
                tx,
                notification.status,
                provider_reference=notification.provider_reference,
                reason=notification.reason,
            )

        logger.info(
            "webhook_processed",
            transaction_id=result.transaction.id,
            provider_status=notification.status,
            raw_status=notification.raw_status,
            state=result.transaction.state.value,
            applied=result.applied,
        )
        return WebhookOutcome(
            processed=True,
            transaction_id=result.transaction.id,
            state=result.transaction.state.value,
            applied=result.applied,
        )

    async def _locate(self, uow: AbstractUnitOfWork, notification: WebhookNotification) -> PaymentTransaction:
        repo = uow.transaction_repository
        tx = None
        if notification.provider_reference:
            tx = await repo.get_by_provider_reference(notification.provider_reference)
        if tx is None and notification.idempotency_reference:
            tx = await repo.get_by_idempotency_reference(notification.idempotency_reference)
        if tx is None:
            raise UnknownTransaction(notification.provider_reference, notification.idempotency_reference)
        return tx

    async def reconcile_stale(self, older_than_seconds: int, limit: int = 100) -> dict:
        """Ask the provider about rows stuck pending/processing; never time them out."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.transaction_repository.list_stale(NON_TERMINAL_STATES, cutoff, limit)

        summary = {"checked": 0, "resolved": 0, "errors": 0}
        for tx in stale:
            summary["checked"] += 1
            try:
                result = await self._orchestrator.check_status(tx.id)
            except PaymentProviderError as exc:
                summary["errors"] += 1
                logger.warning(
                    "reconcile_check_failed",
                    transaction_id=tx.id,
                    error_type=exc.error_type,
                    error=exc.message,
                )
                continue
            if result.transaction.is_terminal:
                summary["resolved"] += 1
        logger.info("reconcile_stale_finished", **summary)
        return summary
