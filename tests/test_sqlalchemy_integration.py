"""Repositories and unit of work against a real (SQLite) database."""
import functools
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from application.dtos.payments import SubmitPayment, WebhookNotification, WithdrawalCommand
from core.settings import PaymentSettings
from domain.order.entity import Order, OrderItem, OrderStatus
from domain.payment.entity import PaymentPurpose, PaymentTransaction, ProviderKind, TransactionState
from domain.payment.service import DuplicateIdempotencyKey
from domain.payout.entity import WithdrawalStatus
from domain.subscription.entity import Subscription
from fakes import NOW, PUSH_PAYER, StubProvider
from infrastructure.composition import build_payment_services
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@pytest_asyncio.fixture
async def uow_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketpay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield functools.partial(SQLAlchemyUnitOfWork, async_sessionmaker(bind=engine, expire_on_commit=False))
    await engine.dispose()


def _tx(reference: str, amount: int = 1000) -> PaymentTransaction:
    return PaymentTransaction(
        id=None,
        user_id="buyer-1",
        amount=amount,
        currency="TZS",
        purpose=PaymentPurpose.TEST_PAYMENT,
        provider_kind=ProviderKind.PUSH,
        idempotency_reference=reference,
    )


@pytest.mark.asyncio
async def test_unique_reference_enforced_by_database(uow_factory):
    async with uow_factory() as uow:
        created = await uow.transaction_repository.create(_tx("TST-1"))
    assert created.id and created.state == TransactionState.PENDING

    with pytest.raises(DuplicateIdempotencyKey):
        async with uow_factory() as uow:
            await uow.transaction_repository.create(_tx("TST-1"))


@pytest.mark.asyncio
async def test_compare_and_set_reports_whether_it_won(uow_factory):
    async with uow_factory() as uow:
        tx = await uow.transaction_repository.create(_tx("TST-2"))

    async with uow_factory() as uow:
        repo = uow.transaction_repository
        assert await repo.compare_and_set_state(
            tx.id, [TransactionState.PENDING], TransactionState.PROCESSING, provider_reference="PR-1"
        )
        assert not await repo.compare_and_set_state(tx.id, [TransactionState.PENDING], TransactionState.FAILED)
        assert await repo.compare_and_set_state(
            tx.id, [TransactionState.PROCESSING], TransactionState.COMPLETED, provider_reference="PR-2"
        )

    async with uow_factory(readonly=True) as uow:
        row = await uow.transaction_repository.get_by_provider_reference("PR-1")
    assert row.state == TransactionState.COMPLETED
    assert row.provider_reference == "PR-1"


@pytest.mark.asyncio
async def test_rollback_discards_writes(uow_factory):
    with pytest.raises(RuntimeError):
        async with uow_factory() as uow:
            await uow.transaction_repository.create(_tx("TST-3"))
            raise RuntimeError("boom")

    async with uow_factory(readonly=True) as uow:
        assert await uow.transaction_repository.get_by_idempotency_reference("TST-3") is None


@pytest.mark.asyncio
async def test_rollover_query_only_returns_due_schedules(uow_factory):
    async with uow_factory() as uow:
        repo = uow.subscription_repository
        due = await repo.create(
            Subscription(
                id=None,
                seller_id="s-due",
                plan="subscription_professional",
                price_monthly=75000,
                expires_at=NOW - timedelta(days=1),
                scheduled_plan="subscription_starter",
                scheduled_price=25000,
            )
        )
        await repo.create(
            Subscription(
                id=None,
                seller_id="s-later",
                plan="subscription_professional",
                price_monthly=75000,
                expires_at=NOW + timedelta(days=5),
                scheduled_plan="subscription_starter",
                scheduled_price=25000,
            )
        )

    async with uow_factory(readonly=True) as uow:
        rows = await uow.subscription_repository.list_due_for_rollover(NOW)
    assert [r.id for r in rows] == [due.id]


@pytest.mark.asyncio
async def test_order_payment_to_withdrawal_end_to_end(uow_factory):
    push = StubProvider(ProviderKind.PUSH)
    services = build_payment_services(lambda kind: push, uow_factory=uow_factory, config=PaymentSettings())

    async with uow_factory() as uow:
        order = await uow.order_repository.create(
            Order(
                id=None,
                buyer_id="buyer-1",
                total_amount=100000,
                currency="TZS",
                items=[OrderItem(id=None, seller_id="seller-1", unit_price=50000, quantity=2)],
            )
        )

    payment = await services.orchestrator.submit(
        SubmitPayment(
            user_id="buyer-1",
            purpose=PaymentPurpose.ORDER_PAYMENT,
            amount=100000,
            provider_kind=ProviderKind.PUSH,
            payer=PUSH_PAYER,
            linked_entity_id=order.id,
        )
    )
    assert payment.transaction.state == TransactionState.PROCESSING

    notification = WebhookNotification(
        provider_kind=ProviderKind.PUSH,
        status="successful",
        provider_reference=payment.transaction.provider_reference,
        amount=100000,
    )
    outcome = await services.reconciliation.process(notification)
    assert outcome.applied
    assert not (await services.reconciliation.process(notification)).applied

    async with uow_factory(readonly=True) as uow:
        assert (await uow.order_repository.get_by_id(order.id)).status == OrderStatus.PAID
        assert await uow.earning_repository.sum_net_completed("seller-1", "TZS") == 95000
        assert await uow.earning_repository.sum_net_completed("seller-1", "USD") == 0

    result = await services.payouts.request_withdrawal(
        WithdrawalCommand(seller_id="seller-1", amount=40000, destination={"network": "TIGOPESA", "account": "0655123456"})
    )
    assert result.withdrawal.status == WithdrawalStatus.PROCESSING
    assert result.payment.transaction.amount == 39200

    balance = await services.payouts.get_balance("seller-1")
    assert balance.available == 55000
