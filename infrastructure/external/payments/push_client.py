"""
USSD-push mobile money adapter (ClickPesa-style third-party API).

Collections run preview → ussd-push; payouts for the withdrawal purpose go to
the disbursement endpoint. The bearer token from `generate-token` is cached and
refreshed shortly before it expires.
"""
from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Any, Callable, Mapping, Optional

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
from core.settings import PushProviderSettings, payment_settings
from domain.common.exceptions import DomainValidationException
from domain.common.money import Money
from domain.payment.entity import PaymentPurpose, ProviderKind
from infrastructure.external.payments.base import BasePaymentClient


SUPPORTED_NETWORKS = frozenset({"MPESA", "TIGOPESA", "AIRTELMONEY", "HALOPESA"})


def normalize_phone(raw: Optional[str], country_code: str = "255") -> str:
    """Return the payer handle as <cc>XXXXXXXXX or raise InvalidPayerHandle."""
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) == 10 and digits.startswith("0"):
        digits = country_code + digits[1:]
    elif len(digits) == 9:
        digits = country_code + digits
    if not re.fullmatch(rf"{country_code}\d{{9}}", digits):
        raise InvalidPayerHandle(
            f"Invalid mobile money number: {raw!r}",
            provider="push",
            field="phone",
            details={"expected_format": f"{country_code}XXXXXXXXX"},
        )
    return digits


class PushPaymentClient(BasePaymentClient):
    provider = "push"
    kind = ProviderKind.PUSH

    def __init__(
        self,
        settings: Optional[PushProviderSettings] = None,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings or payment_settings.push
        super().__init__(
            base_url=self._settings.base_url,
            timeouts=timeouts or payment_settings.timeouts.model_dump(),
            retry=retry or {"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    # --- payer handle -----------------------------------------------------

    def validate_payer(self, payer: PayerDetails) -> PayerDetails:
        phone = normalize_phone(payer.phone, self._settings.country_code)
        network = (payer.network or "").strip().upper()
        if network not in SUPPORTED_NETWORKS:
            raise InvalidPayerHandle(
                f"Unsupported mobile network: {payer.network!r}",
                provider=self.provider,
                field="network",
                details={"supported": sorted(SUPPORTED_NETWORKS)},
            )
        return PayerDetails(phone=phone, network=network, customer=payer.customer)

    # --- auth -------------------------------------------------------------

    async def _get_token(self) -> str:
        async with self._token_lock:
            margin = self._settings.token_refresh_margin_seconds
            if self._token and self._clock() < self._token_expires_at - margin:
                return self._token

            if not self._settings.client_id or not self._settings.api_key:
                raise ProviderUnavailable("Push provider credentials not configured", provider=self.provider)

            body = await self._request(
                "POST",
                "/generate-token",
                operation="generate_token",
                headers={"client-id": self._settings.client_id, "api-key": self._settings.api_key},
            )
            if not body.get("success") or not body.get("token"):
                raise ProviderRejected("Invalid token response", provider=self.provider)
            self._token = str(body["token"])
            self._token_expires_at = self._clock() + self._settings.token_ttl_seconds
            self._log("provider_token_refreshed")
            return self._token

    async def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": await self._get_token()}

    # --- operations -------------------------------------------------------

    async def initiate(self, request: InitiatePayment) -> ProviderReference:
        payer = self.validate_payer(request.payer)
        amount = Money(request.amount, request.currency).to_major_number()
        if request.purpose == PaymentPurpose.WITHDRAWAL:
            return await self._disburse(request, payer, amount)

        payload = {
            "amount": amount,
            "currency": request.currency,
            "phone_number": payer.phone,
            "network": payer.network,
            "reference": request.idempotency_reference,
            "description": request.description,
        }
        headers = await self._auth_headers()
        await self._request("POST", "/ussd-push/preview", operation="preview", headers=headers, json=payload)
        body = await self._request(
            "POST", "/ussd-push", operation="ussd_push", headers=headers, json=payload, idempotent=False
        )
        reference = str(body.get("transaction_id") or body.get("reference") or request.idempotency_reference)
        self._log("push_collection_initiated", reference=request.idempotency_reference, provider_reference=reference)
        return ProviderReference(provider_reference=reference)

    async def _disburse(self, request: InitiatePayment, payer: PayerDetails, amount) -> ProviderReference:
        payload = {
            "amount": amount,
            "currency": request.currency,
            "recipient": {"phoneNumber": payer.phone, "network": payer.network},
            "reference": request.idempotency_reference,
            "description": request.description or f"Seller payout {request.idempotency_reference}",
        }
        body = await self._request(
            "POST",
            self._settings.payout_url,
            operation="disbursement",
            headers=await self._auth_headers(),
            json=payload,
            idempotent=False,
        )
        if not body.get("reference"):
            raise ProviderRejected(
                str(body.get("message") or "Disbursement not accepted"),
                provider=self.provider,
                details={"operation": "disbursement"},
            )
        self._log("push_payout_initiated", reference=request.idempotency_reference, provider_reference=body["reference"])
        return ProviderReference(provider_reference=str(body["reference"]))

    async def check_status(self, provider_reference: str) -> ProviderStatus:
        body = await self._request(
            "GET",
            f"/transactions/{provider_reference}",
            operation="check_status",
            headers=await self._auth_headers(),
        )
        data = body.get("data", body)
        if isinstance(data, list):
            data = data[0] if data else {}
        raw_status = data.get("status")
        amount = data.get("amount") or data.get("collectedAmount")
        return ProviderStatus(
            provider_reference=provider_reference,
            status=self._map_status(raw_status),
            raw_status=raw_status,
            amount=self._to_minor(amount, data.get("currency") or "TZS"),
            reason=data.get("message"),
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
        if not isinstance(payload, dict):
            raise DomainValidationException("Webhook body must be an object")

        raw_status = payload.get("event_type") or payload.get("status")
        if not raw_status or not (payload.get("reference") or payload.get("transaction_id")):
            raise DomainValidationException(
                "Webhook payload missing reference or status",
                details={"keys": sorted(payload.keys())},
            )
        currency = payload.get("currency") or "TZS"
        try:
            return WebhookNotification(
                provider_kind=self.kind,
                status=self._map_status(raw_status),
                provider_reference=payload.get("transaction_id"),
                idempotency_reference=payload.get("reference"),
                raw_status=str(raw_status),
                amount=self._to_minor(payload.get("amount"), currency),
                currency=currency,
                reason=payload.get("message"),
                occurred_at=payload.get("timestamp"),
                data=payload,
            )
        except ValidationError as exc:
            raise DomainValidationException("Malformed webhook payload", details={"errors": exc.errors(include_url=False, include_context=False)}) from exc

