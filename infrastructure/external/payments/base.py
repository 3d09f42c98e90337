"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Any, Callable, Mapping, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import (
    InitiatePayment,
    PayerDetails,
    ProviderReference,
    ProviderStatus,
    WebhookNotification,
)
from application.ports.payment_provider import (
    InvalidSignature,
    ProviderOutcomeUnknown,
    ProviderRejected,
    ProviderUnavailable,
)
from domain.common.exceptions import DomainValidationException
from domain.common.money import Money
from domain.payment.entity import ProviderKind
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class _RetryableStatus(Exception):
    """Raised internally for 5xx/429 so tenacity retries them like transport errors."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


class _Throttled(_RetryableStatus):
    """429: the provider refused the request without acting on it."""


# Raised before any byte reached the provider
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
_RETRY_IDEMPOTENT = (httpx.TimeoutException, httpx.TransportError, _RetryableStatus)
_RETRY_ONCE_ONLY = (*_NOT_SENT, _Throttled)


class BasePaymentClient:
    provider: str = "base"
    kind: ProviderKind

    def __init__(
        self,
        *,
        base_url: str,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self.timeouts,
                transport=self._transport,
            )
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any], retry_on: tuple = _RETRY_IDEMPOTENT):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(retry_on),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        idempotent: bool = True,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Transport errors, timeouts, 5xx and 429 (after retries) raise
        ProviderUnavailable; any other non-2xx raises ProviderRejected.

        Calls that move money pass ``idempotent=False``: they are retried only
        when the request never left this process (or was throttled), and any
        failure after it may have reached the provider raises
        ProviderOutcomeUnknown instead of ProviderUnavailable.
        """

        async def _send() -> httpx.Response:
            async with self.client() as c:
                resp = await c.request(method, path, headers=headers, json=json, params=params)
            if resp.status_code == 429:
                raise _Throttled(resp)
            if resp.status_code >= 500:
                raise _RetryableStatus(resp)
            return resp

        try:
            resp = await self._retry(_send, _RETRY_IDEMPOTENT if idempotent else _RETRY_ONCE_ONLY)
        except _RetryableStatus as exc:
            status_code = exc.response.status_code
            if not idempotent and not isinstance(exc, _Throttled):
                raise self._outcome_unknown(operation, f"HTTP {status_code}", str(status_code)) from exc
            self._log("provider_unavailable", operation=operation, status_code=status_code)
            raise ProviderUnavailable(
                f"{self.provider} {operation} failed with HTTP {status_code}",
                provider=self.provider,
                provider_code=str(status_code),
            ) from exc
        except _NOT_SENT as exc:
            self._log("provider_unavailable", operation=operation, error=str(exc))
            raise ProviderUnavailable(
                f"{self.provider} {operation} connection failed: {exc}",
                provider=self.provider,
            ) from exc
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            if not idempotent:
                raise self._outcome_unknown(operation, type(exc).__name__) from exc
            self._log("provider_unavailable", operation=operation, error=str(exc))
            raise ProviderUnavailable(
                f"{self.provider} {operation} transport error: {exc}",
                provider=self.provider,
            ) from exc

        body = self._decode(resp)
        if resp.status_code >= 400:
            message = str(body.get("message") or body.get("error") or resp.text or resp.reason_phrase)
            self._log("provider_rejected", operation=operation, status_code=resp.status_code, message=message)
            raise ProviderRejected(
                message,
                provider=self.provider,
                provider_code=str(resp.status_code),
                details={"operation": operation},
            )
        return body

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {"message": resp.text}
        return data if isinstance(data, dict) else {"data": data}

    def _outcome_unknown(self, operation: str, cause: str, provider_code: Optional[str] = None) -> ProviderOutcomeUnknown:
        self._log("provider_outcome_unknown", operation=operation, cause=cause)
        return ProviderOutcomeUnknown(
            f"{self.provider} {operation} may have been received: {cause}",
            provider=self.provider,
            provider_code=provider_code,
            details={"operation": operation},
        )

    def validate_payer(self, payer: PayerDetails) -> PayerDetails:
        raise NotImplementedError

    async def initiate(self, request: InitiatePayment) -> ProviderReference:
        raise NotImplementedError

    async def check_status(self, provider_reference: str) -> ProviderStatus:
        raise NotImplementedError

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification:
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: Optional[str]) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.kind.value, {})
        raw = str(provider_status or "").strip()
        # "PAYMENT RECEIVED" and "PAYMENT_RECEIVED" are the same event
        normalized = raw.replace(" ", "_")
        return (
            mapping.get(raw)
            or mapping.get(normalized.upper())
            or mapping.get(normalized.lower())
            or "pending"
        )

    @staticmethod
    def _to_minor(amount: Any, currency: str) -> Optional[int]:
        """Provider amounts are major units; the ledger stores minor units."""
        if amount in (None, ""):
            return None
        try:
            return Money.from_major(amount, currency).amount
        except ArithmeticError as exc:
            raise DomainValidationException(f"Invalid amount: {amount!r}", field="amount") from exc

    def _verify_signature(
        self,
        headers: Mapping[str, Any],
        body: bytes,
        *,
        secret: Optional[str],
        header_name: str,
    ) -> None:
        """HMAC-SHA256 hex digest of the raw body, compared in constant time."""
        if not secret:
            raise InvalidSignature("Webhook secret not configured", provider=self.provider)
        lowered = {str(k).lower(): v for k, v in headers.items()}
        signature = lowered.get(header_name.lower())
        if not signature:
            raise InvalidSignature(f"Missing {header_name} header", provider=self.provider)
        expected = sign_payload(secret, body)
        if not hmac.compare_digest(expected, str(signature).strip().lower()):
            raise InvalidSignature("Signature mismatch", provider=self.provider)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )


def sign_payload(secret: str, body: bytes) -> str:
    """Signature a provider would send for `body`; used by tooling and tests."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
