"""
Payment provider port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements the push
(mobile money) and hosted-checkout adapters. Provider quirks such as phone
normalisation or redirect URL construction stay inside the adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    InitiatePayment,
    PayerDetails,
    ProviderReference,
    ProviderStatus,
    WebhookNotification,
)
from domain.common.exceptions import BusinessException
from domain.payment.entity import ProviderKind
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    code_value = PaymentCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        field: str | None = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=self.code_value,
            message=message,
            error_type=type(self).__name__,
            details=full_details,
            field=field,
        )


class ProviderUnavailable(PaymentProviderError):
    """Transport failure, timeout, 5xx or throttling after retries."""
    code_value = PaymentCode.PROVIDER_UNAVAILABLE


class ProviderRejected(PaymentProviderError):
    """Provider answered and refused (limits, blocked account, bad request)."""
    code_value = PaymentCode.PROVIDER_REJECTED


class ProviderOutcomeUnknown(PaymentProviderError):
    """A money-moving call may have reached the provider but no answer came back.

    The ledger row must stay non-terminal until a webhook or status check resolves it.
    """
    code_value = PaymentCode.PROVIDER_OUTCOME_UNKNOWN


class InvalidPayerHandle(PaymentProviderError):
    code_value = PaymentCode.INVALID_PAYER_HANDLE


class InvalidSignature(PaymentProviderError):
    code_value = PaymentCode.SIGNATURE_ERROR


@runtime_checkable
class PaymentProvider(Protocol):
    """Provider protocol shared by both provider families.

    `validate_payer` raises before any ledger row exists; `initiate` raises
    ProviderUnavailable / ProviderRejected / ProviderOutcomeUnknown; `parse_webhook` raises
    InvalidSignature before looking at the payload.
    """

    kind: ProviderKind

    def validate_payer(self, payer: PayerDetails) -> PayerDetails: ...

    async def initiate(self, request: InitiatePayment) -> ProviderReference: ...

    async def check_status(self, provider_reference: str) -> ProviderStatus: ...

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification: ...

    async def aclose(self) -> None: ...
