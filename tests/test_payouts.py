import asyncio

import pytest

from application.dtos.payments import SubmitPayment, WithdrawalCommand
from application.ports.payment_provider import ProviderOutcomeUnknown, ProviderUnavailable
from domain.order.entity import Order, OrderItem, OrderStatus
from domain.payment.entity import PaymentPurpose, ProviderKind, TransactionState
from domain.payout.entity import WithdrawalStatus
from domain.payout.service import InsufficientBalance, InvalidDestination
from domain.subscription.entity import Subscription
from fakes import PUSH_PAYER


async def _paid_order(services, seller_id="seller-1", price=100000):
    async with services.uow() as uow:
        order = await uow.order_repository.create(
            Order(
                id=None,
                buyer_id="buyer-1",
                total_amount=price,
                currency="TZS",
                items=[OrderItem(id=None, seller_id=seller_id, unit_price=price)],
            )
        )
    result = await services.orchestrator.submit(
        SubmitPayment(
            user_id="buyer-1",
            purpose=PaymentPurpose.ORDER_PAYMENT,
            amount=price,
            provider_kind=ProviderKind.PUSH,
            payer=PUSH_PAYER,
            linked_entity_id=order.id,
        )
    )
    await services.confirm(result.transaction)
    return order, result.transaction


def _withdraw(amount: int, seller_id="seller-1", currency="TZS", **destination) -> WithdrawalCommand:
    dest = {"network": "mpesa", "account": "0712345678"}
    dest.update(destination)
    return WithdrawalCommand(seller_id=seller_id, amount=amount, currency=currency, destination=dest)


@pytest.mark.asyncio
async def test_confirmed_order_payment_credits_earnings_once(services, store):
    order, tx = await _paid_order(services)

    assert store.orders[order.id].status == OrderStatus.PAID
    (earning,) = store.earnings.values()
    assert earning.amount == 100000
    assert earning.platform_fee == 5000
    assert earning.net_amount == 95000

    # duplicate confirmation
    await services.confirm(tx)
    assert len(store.earnings) == 1


@pytest.mark.asyncio
async def test_commission_follows_seller_plan(services, store):
    async with services.uow() as uow:
        await uow.subscription_repository.create(
            Subscription(id=None, seller_id="seller-1", plan="subscription_professional", price_monthly=75000)
        )
    await _paid_order(services)

    (earning,) = store.earnings.values()
    assert earning.platform_fee == 3000
    assert earning.net_amount == 97000


@pytest.mark.asyncio
async def test_unconfirmed_order_payment_credits_nothing(services, store):
    async with services.uow() as uow:
        order = await uow.order_repository.create(
            Order(id=None, buyer_id="b", total_amount=100, currency="TZS", items=[OrderItem(id=None, seller_id="s", unit_price=100)])
        )
    result = await services.orchestrator.submit(
        SubmitPayment(
            user_id="b",
            purpose=PaymentPurpose.ORDER_PAYMENT,
            amount=100,
            provider_kind=ProviderKind.PUSH,
            payer=PUSH_PAYER,
            linked_entity_id=order.id,
        )
    )
    await services.confirm(result.transaction, status="failed")

    assert store.orders[order.id].status == OrderStatus.PENDING
    assert store.earnings == {}


@pytest.mark.asyncio
async def test_withdrawal_reserves_balance_and_pays_net_amount(services, store):
    await _paid_order(services)

    result = await services.payouts.request_withdrawal(_withdraw(50000))

    withdrawal = result.withdrawal
    assert (withdrawal.amount, withdrawal.fee, withdrawal.net_amount) == (50000, 1000, 49000)
    assert withdrawal.status == WithdrawalStatus.PROCESSING
    assert withdrawal.transaction_id == result.payment.transaction.id
    assert withdrawal.destination.account == "255712345678"

    tx = result.payment.transaction
    assert tx.purpose == PaymentPurpose.WITHDRAWAL
    assert tx.amount == 49000
    assert tx.linked_entity_id == withdrawal.id

    balance = await services.payouts.get_balance("seller-1")
    assert (balance.earned, balance.withdrawn, balance.reserved, balance.available) == (95000, 0, 50000, 45000)


@pytest.mark.asyncio
async def test_withdrawal_follows_ledger_to_completion(services, store):
    await _paid_order(services)
    result = await services.payouts.request_withdrawal(_withdraw(50000))

    await services.confirm(result.payment.transaction)

    assert store.withdrawals[result.withdrawal.id].status == WithdrawalStatus.COMPLETED
    balance = await services.payouts.get_balance("seller-1")
    assert (balance.withdrawn, balance.reserved, balance.available) == (50000, 0, 45000)


@pytest.mark.asyncio
async def test_failed_payout_releases_reservation(services, store):
    await _paid_order(services)
    result = await services.payouts.request_withdrawal(_withdraw(50000))

    await services.confirm(result.payment.transaction, status="failed", reason="recipient blocked")

    withdrawal = store.withdrawals[result.withdrawal.id]
    assert withdrawal.status == WithdrawalStatus.FAILED
    assert withdrawal.error_message == "recipient blocked"
    assert (await services.payouts.get_balance("seller-1")).available == 95000


@pytest.mark.asyncio
async def test_provider_outage_fails_withdrawal(services, store):
    await _paid_order(services)
    services.push.fail_with = ProviderUnavailable("timeout", provider="stub")

    with pytest.raises(ProviderUnavailable):
        await services.payouts.request_withdrawal(_withdraw(50000))

    (withdrawal,) = store.withdrawals.values()
    assert withdrawal.status == WithdrawalStatus.FAILED
    payout_tx = store.transactions[withdrawal.transaction_id]
    assert payout_tx.state == TransactionState.FAILED
    assert (await services.payouts.get_balance("seller-1")).available == 95000


@pytest.mark.asyncio
async def test_insufficient_balance_rejected_without_row(services, store):
    await _paid_order(services)

    with pytest.raises(InsufficientBalance):
        await services.payouts.request_withdrawal(_withdraw(95001))
    assert store.withdrawals == {}


@pytest.mark.asyncio
async def test_concurrent_withdrawals_cannot_overdraw(services, store):
    await _paid_order(services)

    results = await asyncio.gather(
        services.payouts.request_withdrawal(_withdraw(60000)),
        services.payouts.request_withdrawal(_withdraw(60000)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientBalance)
    assert len(store.withdrawals) == 1
    assert store.seller_locks == ["seller-1", "seller-1"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "destination",
    [
        {"provider_kind": "hosted"},
        {"account": "12345"},
        {"network": "PIGEONPOST"},
    ],
)
async def test_invalid_destination(services, store, destination):
    await _paid_order(services)
    with pytest.raises(InvalidDestination):
        await services.payouts.request_withdrawal(_withdraw(1000, **destination))
    assert store.withdrawals == {}


@pytest.mark.asyncio
async def test_unknown_payout_outcome_keeps_reservation(services, store):
    await _paid_order(services)
    services.push.fail_with = ProviderOutcomeUnknown("read timeout", provider="stub")

    result = await services.payouts.request_withdrawal(_withdraw(50000))

    assert result.payment.transaction.state == TransactionState.PENDING
    assert result.payment.status_hint == "processing"
    assert store.withdrawals[result.withdrawal.id].status == WithdrawalStatus.PENDING
    assert (await services.payouts.get_balance("seller-1")).available == 45000

    with pytest.raises(InsufficientBalance):
        await services.payouts.request_withdrawal(_withdraw(50000))

    await services.confirm(result.payment.transaction)
    assert store.withdrawals[result.withdrawal.id].status == WithdrawalStatus.COMPLETED
    assert (await services.payouts.get_balance("seller-1")).withdrawn == 50000


@pytest.mark.asyncio
async def test_balance_is_per_currency(services, store):
    await _paid_order(services)

    with pytest.raises(InsufficientBalance):
        await services.payouts.request_withdrawal(_withdraw(90000, currency="USD"))
    assert store.withdrawals == {}
    assert len(store.transactions) == 1

    usd = await services.payouts.get_balance("seller-1", "usd")
    assert (usd.currency, usd.earned, usd.available) == ("USD", 0, 0)
    assert (await services.payouts.get_balance("seller-1")).available == 95000


@pytest.mark.asyncio
async def test_seller_locks_are_released_after_use(services):
    await _paid_order(services)

    await asyncio.gather(
        services.payouts.request_withdrawal(_withdraw(10000)),
        services.payouts.request_withdrawal(_withdraw(10000, seller_id="seller-2")),
        services.payouts.request_withdrawal(_withdraw(10000)),
        return_exceptions=True,
    )

    assert services.payouts._seller_locks == {}
