"""
Factory for payment provider clients.

`get_payment_provider` caches one client per kind for the API process (token
cache and connection pool are reused); `create_payment_provider` returns a fresh
client for callers that run their own event loop, such as Celery tasks.
"""
from __future__ import annotations

from domain.payment.entity import ProviderKind
from application.ports.payment_provider import PaymentProvider
from core.logging_config import get_logger


logger = get_logger(__name__)

_providers: dict[ProviderKind, PaymentProvider] = {}


def create_payment_provider(kind: ProviderKind | str) -> PaymentProvider:
    name = kind if isinstance(kind, ProviderKind) else ProviderKind(str(kind).lower())
    if name == ProviderKind.PUSH:
        from .push_client import PushPaymentClient
        return PushPaymentClient()
    if name == ProviderKind.HOSTED:
        from .hosted_client import HostedCheckoutClient
        return HostedCheckoutClient()
    raise ValueError(f"Unsupported payment provider: {kind}")


def get_payment_provider(kind: ProviderKind | str) -> PaymentProvider:
    name = kind if isinstance(kind, ProviderKind) else ProviderKind(str(kind).lower())
    if name not in _providers:
        _providers[name] = create_payment_provider(name)
    return _providers[name]


async def close_payment_providers() -> None:
    while _providers:
        kind, provider = _providers.popitem()
        await provider.aclose()
        logger.info("payment_provider_closed", provider_kind=kind.value)
