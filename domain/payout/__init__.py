"""Payout domain exports."""
from .entity import (
    EarningStatus,
    PayoutDestination,
    SellerEarning,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .repository import EarningRepository, WithdrawalRepository

__all__ = [
    "EarningStatus",
    "PayoutDestination",
    "SellerEarning",
    "WithdrawalRequest",
    "WithdrawalStatus",
    "EarningRepository",
    "WithdrawalRepository",
]
