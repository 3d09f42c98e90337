"""Wiring of application services to SQLAlchemy and the provider clients.

Shared by the API dependencies and the Celery tasks so both build the same
object graph from `payment_settings`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from application.ports.payment_provider import PaymentProvider
from application.services.billing_service import BillingService
from application.services.payment_service import PaymentOrchestrator
from application.services.payout_service import PayoutService
from application.services.reconciliation_service import ReconciliationService
from application.services.settlement_service import SettlementService
from core.settings import PaymentSettings, payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import ProviderKind
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@dataclass
class PaymentServices:
    orchestrator: PaymentOrchestrator
    reconciliation: ReconciliationService
    billing: BillingService
    payouts: PayoutService


def build_payment_services(
    provider_for: Callable[[ProviderKind], PaymentProvider],
    *,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    config: PaymentSettings = payment_settings,
) -> PaymentServices:
    settlement = SettlementService(
        cycle_days=config.billing.cycle_days,
        default_commission_rate=config.billing.default_commission_rate,
    )
    orchestrator = PaymentOrchestrator(
        uow_factory,
        provider_for,
        settlement,
        callback_base_url=config.callback_base_url,
    )
    return PaymentServices(
        orchestrator=orchestrator,
        reconciliation=ReconciliationService(
            uow_factory,
            provider_for,
            settlement,
            orchestrator,
            amount_tolerance=config.webhook.amount_tolerance,
        ),
        billing=BillingService(
            uow_factory,
            orchestrator,
            cycle_days=config.billing.cycle_days,
            upgrade_charge=config.billing.upgrade_charge,
            currency=config.billing.currency,
            default_commission_rate=config.billing.default_commission_rate,
        ),
        payouts=PayoutService(
            uow_factory,
            orchestrator,
            provider_for,
            fee_rate=config.payout.fee_rate,
        ),
    )
