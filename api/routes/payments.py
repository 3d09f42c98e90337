"""
Payments API routes.

Thin layer over the orchestrator and the reconciliation service: submission,
lookup, manual status checks and provider webhooks. No provider details here.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, Request

from application.dtos.payments import PaymentView, SubmitPayment, TransactionView
from application.services.payment_service import PaymentOrchestrator
from application.services.reconciliation_service import ReconciliationService
from api.dependencies import get_orchestrator, get_reconciliation_service
from core.response import success_response
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.entity import ProviderKind


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _ip_allowed(remote_ip: str | None) -> bool:
    allowlist = payment_settings.webhook.ip_allowlist or []
    if not allowlist:
        return True
    try:
        rip = ipaddress.ip_address(remote_ip or "")
    except ValueError:
        return False
    for entry in allowlist:
        if "/" in entry:
            if rip in ipaddress.ip_network(entry, strict=False):
                return True
        elif remote_ip == entry:
            return True
    return False


@router.post("", summary="Submit payment")
async def submit_payment(
    payload: SubmitPayment,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.submit(payload)
    message = "Duplicate submission" if result.duplicate else "Payment submitted"
    return success_response(data=PaymentView.from_result(result).model_dump(mode="json"), message=message)


@router.get("/{transaction_id}", summary="Get payment")
async def get_payment(
    transaction_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    tx = await orchestrator.get_transaction(transaction_id)
    return success_response(data=TransactionView.model_validate(tx).model_dump(mode="json"))


@router.post("/{transaction_id}/check-status", summary="Reconcile payment with provider")
async def check_payment_status(
    transaction_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.check_status(transaction_id)
    return success_response(data=PaymentView.from_result(result).model_dump(mode="json"), message="Status checked")


@router.post("/webhooks/{provider_kind}", summary="Provider notification")
async def payments_webhook(
    provider_kind: ProviderKind,
    request: Request,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
):
    remote_ip = getattr(request.state, "client_ip", None) or (request.client.host if request.client else None)
    if not _ip_allowed(remote_ip):
        logger.warning("webhook_ip_not_allowed", provider_kind=provider_kind.value, remote_ip=remote_ip)
        return success_response(data={"processed": False, "reason": "ip_not_allowed"}, message="Ignored")

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    outcome = await reconciliation.handle_webhook(provider_kind, headers, raw_body)

    # Always acknowledge so the provider stops retrying; the body says what happened
    return success_response(
        data=outcome.model_dump(mode="json"),
        message="Processed" if outcome.processed else "Ignored",
    )
