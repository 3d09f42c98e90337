"""
Seller payout routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from application.dtos.payments import WithdrawalCommand, WithdrawalResultView
from application.services.payout_service import PayoutService
from api.dependencies import get_payout_service
from core.response import success_response


router = APIRouter(tags=["Withdrawals"])


@router.post("/withdrawals", summary="Request a withdrawal")
async def request_withdrawal(payload: WithdrawalCommand, payouts: PayoutService = Depends(get_payout_service)):
    result = await payouts.request_withdrawal(payload)
    return success_response(
        data=WithdrawalResultView.from_result(result).model_dump(mode="json"),
        message="Withdrawal submitted",
    )


@router.get("/sellers/{seller_id}/balance", summary="Seller balance")
async def get_balance(
    seller_id: str,
    currency: str = Query("TZS", description="ISO-4217 code; balances are kept per currency"),
    payouts: PayoutService = Depends(get_payout_service),
):
    balance = await payouts.get_balance(seller_id, currency)
    return success_response(data=balance.model_dump())
