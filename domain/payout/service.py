"""
提现领域服务 - 费用计算、余额计算与收益拆分
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from .entity import SellerEarning
from domain.common.exceptions import BusinessException
from domain.common.money import apply_rate
from domain.order.entity import Order
from shared.codes.payment_codes import PaymentCode


class InsufficientBalance(BusinessException):
    def __init__(self, seller_id: str, requested: int, available: int):
        super().__init__(
            code=PaymentCode.INSUFFICIENT_BALANCE,
            message=f"Requested {requested} exceeds available balance {available}",
            error_type="InsufficientBalance",
            details={"seller_id": seller_id, "requested": requested, "available": available},
            field="amount",
        )


class InvalidDestination(BusinessException):
    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(
            code=PaymentCode.INVALID_DESTINATION,
            message=message,
            error_type="InvalidDestination",
            details=details,
            field="destination",
        )


@dataclass(frozen=True)
class FeeSplit:
    amount: int
    fee: int
    net_amount: int


def split_fee(amount: int, rate: Decimal) -> FeeSplit:
    """fee = round_half_up(amount × rate)，net = amount − fee"""
    fee = apply_rate(amount, rate)
    return FeeSplit(amount=amount, fee=fee, net_amount=amount - fee)


def available_balance(earned_net: int, reserved: int) -> int:
    return earned_net - reserved


def earnings_for_order(order: Order, rate_by_seller: dict) -> List[SellerEarning]:
    """为订单每一行生成收益记录，佣金按卖家计划比例计算"""
    earnings = []
    for item in order.items:
        split = split_fee(item.gross_amount, rate_by_seller[item.seller_id])
        earnings.append(
            SellerEarning(
                id=None,
                seller_id=item.seller_id,
                order_id=order.id,
                order_item_id=item.id,
                amount=split.amount,
                platform_fee=split.fee,
                net_amount=split.net_amount,
                currency=order.currency,
            )
        )
    return earnings
