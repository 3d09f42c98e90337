"""
Business codes shared across layers.

`BusinessCode` covers generic request/system failures; payment, billing and
payout failures live in `shared.codes.payment_codes.PaymentCode` (6xxxx/7xxxx).
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    CONFLICT = 20002
    NOT_FOUND = 20006

    # Authorization errors (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    # Rate limiting (5xxxx)
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
