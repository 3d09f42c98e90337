"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Ledger errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_UNAVAILABLE = 60001
    SIGNATURE_ERROR = 60002
    PROVIDER_REJECTED = 60003
    INVALID_PAYER_HANDLE = 60004
    PROVIDER_OUTCOME_UNKNOWN = 60005
    UNKNOWN_TRANSACTION = 60010
    DUPLICATE_IDEMPOTENCY_KEY = 60011
    INVALID_TRANSITION = 60012
    TRANSACTION_NOT_FOUND = 60013

    # Billing/Payout errors (7xxxx)
    INSUFFICIENT_BALANCE = 70000
    INVALID_DESTINATION = 70001
    PLAN_NOT_FOUND = 70010
    PLAN_UNCHANGED = 70011
    SUBSCRIPTION_NOT_FOUND = 70012
    SUBSCRIPTION_CANCELLED = 70013


# Provider→ProviderStatus mapping (pending|successful|failed|cancelled)
PROVIDER_STATUS_TO_INTERNAL = {
    "push": {
        "COMPLETED": "successful",
        "SUCCESS": "successful",
        "SUCCESSFUL": "successful",
        "PAYMENT_RECEIVED": "successful",
        "FAILED": "failed",
        "PAYMENT_FAILED": "failed",
        "REVERSED": "failed",
        "REFUNDED": "failed",
        "CANCELLED": "cancelled",
        "PENDING": "pending",
        "PROCESSING": "pending",
        "INITIATED": "pending",
    },
    "hosted": {
        "successful": "successful",
        "completed": "successful",
        "failed": "failed",
        "cancelled": "cancelled",
        "pending": "pending",
    },
}
