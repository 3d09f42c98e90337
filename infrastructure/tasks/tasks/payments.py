"""
Celery tasks for payment reconciliation and subscription cycle rollover.

Each task runs its coroutine with asyncio.run and builds fresh provider
clients for that loop; they are closed before the loop ends.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from celery import shared_task

from application.ports.payment_provider import PaymentProvider
from core.logging_config import get_logger
from domain.payment.entity import ProviderKind
from infrastructure.composition import PaymentServices, build_payment_services
from infrastructure.database import engine
from infrastructure.external.payments import create_payment_provider
from ..utils.base_task import BaseTask


logger = get_logger(__name__)

T = TypeVar("T")


async def _with_services(fn: Callable[[PaymentServices], Awaitable[T]]) -> T:
    providers: dict[ProviderKind, PaymentProvider] = {}

    def provider_for(kind: ProviderKind) -> PaymentProvider:
        if kind not in providers:
            providers[kind] = create_payment_provider(kind)
        return providers[kind]

    try:
        return await fn(build_payment_services(provider_for))
    finally:
        for provider in providers.values():
            await provider.aclose()
        # pooled connections belong to this loop
        await engine.dispose()


@shared_task(name="payments.reconcile_stale", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def reconcile_stale_transactions(self, older_than_seconds: int = 900, limit: int = 100) -> dict:
    """Ask providers about rows stuck in pending/processing and apply terminal answers."""
    summary = asyncio.run(
        _with_services(lambda s: s.reconciliation.reconcile_stale(older_than_seconds, limit))
    )
    logger.info("stale_sweep_finished", **summary)
    return summary


@shared_task(name="payments.check_status", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def check_payment_status(self, transaction_id: str) -> dict:
    result = asyncio.run(_with_services(lambda s: s.orchestrator.check_status(transaction_id)))
    logger.info(
        "payment_status_polled",
        transaction_id=transaction_id,
        state=result.transaction.state.value,
    )
    return {"transaction_id": transaction_id, "state": result.transaction.state.value}


@shared_task(name="billing.roll_over", bind=True, base=BaseTask, max_retries=3, default_retry_delay=60)
def roll_over_subscriptions(self, limit: int = 100) -> dict:
    """Apply scheduled downgrades whose billing cycle has ended."""
    applied = asyncio.run(_with_services(lambda s: s.billing.roll_over(limit=limit)))
    logger.info("subscription_rollover_finished", applied=applied)
    return {"applied": applied}
