"""
Hosted checkout adapter (Flutterwave-style v3 API).

`initiate` creates a payment link; the customer completes payment on the
provider's page and the outcome arrives by webhook. Our idempotency reference
doubles as `tx_ref`, which is also the provider reference on the ledger row.
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional

import httpx
from pydantic import ValidationError

from application.dtos.payments import (
    InitiatePayment,
    PayerDetails,
    ProviderReference,
    ProviderStatus,
    WebhookNotification,
)
from application.ports.payment_provider import InvalidPayerHandle, ProviderRejected, ProviderUnavailable
from core.settings import HostedProviderSettings, payment_settings
from domain.common.exceptions import DomainValidationException
from domain.common.money import Money
from domain.payment.entity import PaymentPurpose, ProviderKind
from infrastructure.external.payments.base import BasePaymentClient


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class HostedCheckoutClient(BasePaymentClient):
    provider = "hosted"
    kind = ProviderKind.HOSTED

    def __init__(
        self,
        settings: Optional[HostedProviderSettings] = None,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or payment_settings.hosted
        super().__init__(
            base_url=self._settings.base_url,
            timeouts=timeouts or payment_settings.timeouts.model_dump(),
            retry=retry or {"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )

    def validate_payer(self, payer: PayerDetails) -> PayerDetails:
        email = (payer.customer.email if payer.customer else None) or ""
        if not _EMAIL_RE.match(email.strip()):
            raise InvalidPayerHandle(
                "Hosted checkout requires a valid customer email",
                provider=self.provider,
                field="customer.email",
            )
        return payer

    def _headers(self) -> dict[str, str]:
        if not self._settings.secret_key:
            raise ProviderUnavailable("Hosted provider secret key not configured", provider=self.provider)
        return {"Authorization": f"Bearer {self._settings.secret_key}"}

    async def initiate(self, request: InitiatePayment) -> ProviderReference:
        if request.purpose == PaymentPurpose.WITHDRAWAL:
            raise ProviderRejected("Hosted checkout cannot send payouts", provider=self.provider)
        payer = self.validate_payer(request.payer)
        tx_ref = request.idempotency_reference
        meta = dict(request.metadata or {})
        meta.setdefault("purpose", request.purpose.value)

        payload = {
            "tx_ref": tx_ref,
            "amount": Money(request.amount, request.currency).to_major_number(),
            "currency": request.currency,
            "payment_options": self._settings.payment_options,
            "redirect_url": request.return_url,
            "customer": {
                "email": payer.customer.email,
                "name": payer.customer.name or payer.customer.email,
            },
            "customizations": {
                "title": self._settings.checkout_title,
                "description": request.description,
            },
            "meta": meta,
        }
        body = await self._request(
            "POST", "/payments", operation="create_checkout", headers=self._headers(), json=payload, idempotent=False
        )
        link = (body.get("data") or {}).get("link")
        if body.get("status") != "success" or not link:
            raise ProviderRejected(
                str(body.get("message") or "Checkout link not created"),
                provider=self.provider,
                details={"operation": "create_checkout"},
            )
        self._log("hosted_checkout_created", reference=tx_ref)
        return ProviderReference(provider_reference=tx_ref, checkout_url=link)

    async def check_status(self, provider_reference: str) -> ProviderStatus:
        body = await self._request(
            "GET",
            "/transactions/verify_by_reference",
            operation="verify",
            headers=self._headers(),
            params={"tx_ref": provider_reference},
        )
        data = body.get("data") or {}
        raw_status = data.get("status")
        return ProviderStatus(
            provider_reference=provider_reference,
            status=self._map_status(raw_status),
            raw_status=raw_status,
            amount=self._to_minor(data.get("amount"), data.get("currency") or "TZS"),
            reason=data.get("processor_response"),
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification:
        self._verify_signature(
            headers,
            body,
            secret=self._settings.webhook_secret,
            header_name=self._settings.signature_header,
        )
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise DomainValidationException("Webhook body is not JSON") from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("tx_ref") or not data.get("status"):
            raise DomainValidationException("Webhook payload missing data.tx_ref or data.status")

        currency = data.get("currency") or "TZS"
        try:
            return WebhookNotification(
                provider_kind=self.kind,
                status=self._map_status(data["status"]),
                provider_reference=data["tx_ref"],
                idempotency_reference=data["tx_ref"],
                raw_status=str(data["status"]),
                amount=self._to_minor(data.get("amount"), currency),
                currency=currency,
                reason=data.get("processor_response"),
                occurred_at=data.get("created_at"),
                data=payload,
            )
        except ValidationError as exc:
            raise DomainValidationException(
                "Malformed webhook payload",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

