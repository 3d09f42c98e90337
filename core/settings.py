"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so provider credentials, billing and
payout knobs can be loaded (and overridden in tests) independently.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 2.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    # Amount echoed by the provider may differ by rounding
    amount_tolerance: int = 1
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class PushProviderSettings(BaseModel):
    """USSD-push mobile money provider (collections + payouts)."""
    base_url: str = "https://api.clickpesa.com/third-parties"
    payout_url: str = "https://api.clickpesa.com/v1/disbursements"
    client_id: Optional[str] = None
    api_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    signature_header: str = "X-ClickPesa-Signature"
    country_code: str = "255"
    token_ttl_seconds: int = 3600
    token_refresh_margin_seconds: int = 300


class HostedProviderSettings(BaseModel):
    """Hosted checkout provider (redirect flow)."""
    base_url: str = "https://api.flutterwave.com/v3"
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    signature_header: str = "verif-hash"
    payment_options: str = "card,mobilemoney,ussd,banktransfer"
    checkout_title: str = "Marketplace Checkout"


class BillingSettings(BaseModel):
    cycle_days: int = 30
    # subscription→subscription upgrade charge: price delta or full new price
    upgrade_charge: Literal["delta", "full"] = "delta"
    default_commission_rate: Decimal = Decimal("0.05")
    currency: str = "TZS"


class PayoutSettings(BaseModel):
    fee_rate: Decimal = Decimal("0.02")
    currency: str = "TZS"


class ReconciliationSettings(BaseModel):
    stale_after_seconds: int = 900
    sweep_batch_size: int = 100
    sweep_interval_seconds: int = 300
    rollover_interval_seconds: int = 3600


class PaymentSettings(BaseSettings):
    callback_base_url: str = Field(default="http://localhost:5173", validation_alias="PAYMENT__CALLBACK_BASE_URL")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    push: PushProviderSettings = Field(default_factory=PushProviderSettings)
    hosted: HostedProviderSettings = Field(default_factory=HostedProviderSettings)

    billing: BillingSettings = Field(default_factory=BillingSettings)
    payout: PayoutSettings = Field(default_factory=PayoutSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
