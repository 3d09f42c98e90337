"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import PaymentTransactionModel
from .order import OrderModel, OrderItemModel
from .subscription import SubscriptionModel
from .payout import SellerEarningModel, WithdrawalRequestModel

__all__ = [
    "Base",
    "metadata",
    "PaymentTransactionModel",
    "OrderModel",
    "OrderItemModel",
    "SubscriptionModel",
    "SellerEarningModel",
    "WithdrawalRequestModel",
]
