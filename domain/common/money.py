"""
Money helpers - amounts are integer minor units end to end.

Conversion to decimal major units happens only at the provider boundary.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from domain.common.exceptions import DomainValidationException


# Mobile-money currencies settle in whole units in practice
CURRENCY_EXPONENTS = {
    "TZS": 0,
    "UGX": 0,
    "RWF": 0,
    "KES": 0,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "ZAR": 2,
    "NGN": 2,
    "GHS": 2,
}


def validate_currency(currency: str) -> str:
    code = (currency or "").upper()
    if len(code) != 3 or not code.isalpha():
        raise DomainValidationException(f"Invalid currency code: {currency}", field="currency")
    if code not in CURRENCY_EXPONENTS:
        raise DomainValidationException(f"Unsupported currency: {code}", field="currency")
    return code


def validate_amount(amount: int, *, field: str = "amount") -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise DomainValidationException(f"Amount must be integer minor units: {amount!r}", field=field)
    if amount <= 0:
        raise DomainValidationException(f"Amount must be greater than 0: {amount}", field=field)
    return amount


def apply_rate(amount: int, rate: Decimal) -> int:
    """amount × rate rounded half-up to whole minor units."""
    return int((Decimal(amount) * Decimal(rate)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Money:
    amount: int
    currency: str

    def __post_init__(self) -> None:
        validate_amount(self.amount)
        object.__setattr__(self, "currency", validate_currency(self.currency))

    @property
    def exponent(self) -> int:
        return CURRENCY_EXPONENTS[self.currency]

    def to_major(self) -> Decimal:
        return Decimal(self.amount).scaleb(-self.exponent)

    def to_major_number(self) -> int | float:
        """JSON-friendly major units (providers expect numbers, not strings)."""
        major = self.to_major()
        return int(major) if self.exponent == 0 else float(major)

    @classmethod
    def from_major(cls, value: Decimal | int | float | str, currency: str) -> "Money":
        code = validate_currency(currency)
        minor = (Decimal(str(value)).scaleb(CURRENCY_EXPONENTS[code])).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return cls(int(minor), code)
