"""
API依赖项 - 应用服务装配
"""
from functools import lru_cache

from fastapi import Depends

from application.services.billing_service import BillingService
from application.services.payment_service import PaymentOrchestrator
from application.services.payout_service import PayoutService
from application.services.reconciliation_service import ReconciliationService
from infrastructure.composition import PaymentServices, build_payment_services
from infrastructure.external.payments import get_payment_provider


@lru_cache
def get_payment_services() -> PaymentServices:
    # 进程内单例：提现的按卖家锁与提供商令牌缓存需要跨请求共享
    return build_payment_services(get_payment_provider)


def get_orchestrator(services: PaymentServices = Depends(get_payment_services)) -> PaymentOrchestrator:
    return services.orchestrator


def get_reconciliation_service(services: PaymentServices = Depends(get_payment_services)) -> ReconciliationService:
    return services.reconciliation


def get_billing_service(services: PaymentServices = Depends(get_payment_services)) -> BillingService:
    return services.billing


def get_payout_service(services: PaymentServices = Depends(get_payment_services)) -> PayoutService:
    return services.payouts
