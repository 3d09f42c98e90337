import asyncio

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import PaymentPurpose, ProviderKind, TransactionState
from domain.payment.service import DuplicateIdempotencyKey, InvalidTransition, TransactionLedger
from fakes import FakeTransactionRepository, InMemoryStore


def _ledger() -> TransactionLedger:
    return TransactionLedger(FakeTransactionRepository(InMemoryStore()))


async def _create(ledger: TransactionLedger, reference: str = "ORD-1-1700000000000", amount: int = 5000):
    return await ledger.create(
        user_id="buyer-1",
        amount=amount,
        currency="TZS",
        purpose=PaymentPurpose.ORDER_PAYMENT,
        provider_kind=ProviderKind.PUSH,
        idempotency_reference=reference,
        linked_entity_id="order-1",
    )


@pytest.mark.asyncio
async def test_create_starts_pending_and_rejects_reused_reference():
    ledger = _ledger()
    tx = await _create(ledger)
    assert tx.id
    assert tx.state == TransactionState.PENDING
    assert tx.provider_reference is None

    with pytest.raises(DuplicateIdempotencyKey):
        await _create(ledger)


@pytest.mark.asyncio
async def test_create_rejects_non_positive_amount():
    ledger = _ledger()
    with pytest.raises(DomainValidationException):
        await _create(ledger, amount=0)


@pytest.mark.asyncio
async def test_transition_applies_then_duplicate_is_noop():
    ledger = _ledger()
    tx = await _create(ledger)

    result = await ledger.transition(tx.id, [TransactionState.PENDING], TransactionState.PROCESSING, provider_reference="PR-1")
    assert result.applied
    assert result.previous_state == TransactionState.PENDING
    assert result.transaction.provider_reference == "PR-1"

    done = await ledger.transition(
        tx.id,
        [TransactionState.PENDING, TransactionState.PROCESSING],
        TransactionState.COMPLETED,
    )
    assert done.applied
    assert done.transaction.state == TransactionState.COMPLETED

    again = await ledger.transition(
        tx.id,
        [TransactionState.PENDING, TransactionState.PROCESSING],
        TransactionState.COMPLETED,
    )
    assert not again.applied
    assert again.transaction.state == TransactionState.COMPLETED
    assert again.previous_state == TransactionState.COMPLETED


@pytest.mark.asyncio
async def test_terminal_state_never_regresses():
    ledger = _ledger()
    tx = await _create(ledger)
    await ledger.transition(tx.id, [TransactionState.PENDING], TransactionState.COMPLETED)

    late_failure = await ledger.transition(
        tx.id,
        [TransactionState.PENDING, TransactionState.PROCESSING],
        TransactionState.FAILED,
        failure_reason="late",
    )
    assert not late_failure.applied
    assert late_failure.transaction.state == TransactionState.COMPLETED
    assert late_failure.transaction.failure_reason is None


@pytest.mark.asyncio
async def test_transition_from_unexpected_live_state_raises():
    ledger = _ledger()
    tx = await _create(ledger)
    with pytest.raises(InvalidTransition):
        await ledger.transition(tx.id, [TransactionState.PROCESSING], TransactionState.COMPLETED)


@pytest.mark.asyncio
async def test_transition_out_of_terminal_state_is_rejected_upfront():
    ledger = _ledger()
    tx = await _create(ledger)
    with pytest.raises(DomainValidationException):
        await ledger.transition(tx.id, [TransactionState.COMPLETED], TransactionState.PROCESSING)


@pytest.mark.asyncio
async def test_concurrent_transitions_apply_once():
    ledger = _ledger()
    tx = await _create(ledger)

    results = await asyncio.gather(*[
        ledger.transition(
            tx.id,
            [TransactionState.PENDING, TransactionState.PROCESSING],
            TransactionState.COMPLETED,
        )
        for _ in range(5)
    ])
    assert sum(r.applied for r in results) == 1
    assert all(r.transaction.state == TransactionState.COMPLETED for r in results)


@pytest.mark.asyncio
async def test_provider_reference_is_only_filled_once():
    ledger = _ledger()
    tx = await _create(ledger)
    await ledger.attach_provider_reference(tx.id, "PR-first")
    tx = await ledger.attach_provider_reference(tx.id, "PR-second", checkout_url="https://pay.test/x")
    assert tx.provider_reference == "PR-first"
    assert tx.checkout_url == "https://pay.test/x"
