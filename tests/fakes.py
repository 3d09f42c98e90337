"""In-memory unit of work and provider doubles shared by the test modules."""
import copy
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional

from application.dtos.payments import (
    InitiatePayment,
    PayerDetails,
    ProviderReference,
    ProviderStatus,
    WebhookNotification,
)
from application.ports.payment_provider import InvalidPayerHandle, InvalidSignature
from application.services.billing_service import BillingService
from application.services.payment_service import PaymentOrchestrator
from application.services.payout_service import PayoutService
from application.services.reconciliation_service import ReconciliationService
from application.services.settlement_service import SettlementService
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.repository import OrderRepository
from domain.payment.entity import PaymentTransaction, ProviderKind, TransactionState
from domain.payment.repository import TransactionRepository
from domain.payment.service import DuplicateIdempotencyKey
from domain.payout.entity import SellerEarning, WithdrawalRequest, WithdrawalStatus
from domain.payout.repository import EarningRepository, WithdrawalRepository
from domain.subscription.entity import Subscription
from domain.subscription.repository import SubscriptionRepository
from domain.subscription.service import SubscriptionNotFound
from infrastructure.external.payments.push_client import SUPPORTED_NETWORKS, normalize_phone


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

WEBHOOK_SECRET = "whsec_test"


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryStore:
    """Rows shared by every unit of work opened against it (acts as the database)."""

    def __init__(self) -> None:
        self.transactions: dict[str, PaymentTransaction] = {}
        self.orders: dict[str, Order] = {}
        self.subscriptions: dict[str, Subscription] = {}
        self.earnings: dict[str, SellerEarning] = {}
        self.withdrawals: dict[str, WithdrawalRequest] = {}
        self.seller_locks: List[str] = []


class FakeTransactionRepository(TransactionRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        if any(t.idempotency_reference == transaction.idempotency_reference for t in self.store.transactions.values()):
            raise DuplicateIdempotencyKey(transaction.idempotency_reference)
        row = copy.deepcopy(transaction)
        row.id = row.id or _new_id()
        self.store.transactions[row.id] = row
        return copy.deepcopy(row)

    async def get_by_id(self, transaction_id: str) -> Optional[PaymentTransaction]:
        row = self.store.transactions.get(transaction_id)
        return copy.deepcopy(row) if row else None

    async def get_by_idempotency_reference(self, reference: str) -> Optional[PaymentTransaction]:
        for row in self.store.transactions.values():
            if row.idempotency_reference == reference:
                return copy.deepcopy(row)
        return None

    async def get_by_provider_reference(self, provider_reference: str) -> Optional[PaymentTransaction]:
        for row in self.store.transactions.values():
            if row.provider_reference == provider_reference:
                return copy.deepcopy(row)
        return None

    async def compare_and_set_state(
        self,
        transaction_id: str,
        from_states: Iterable[TransactionState],
        to_state: TransactionState,
        *,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        row = self.store.transactions.get(transaction_id)
        if row is None or row.state not in set(from_states):
            return False
        row.state = to_state
        row.updated_at = datetime.now(timezone.utc)
        if provider_reference and not row.provider_reference:
            row.provider_reference = provider_reference
        if failure_reason:
            row.failure_reason = failure_reason
        return True

    async def set_provider_details(
        self,
        transaction_id: str,
        *,
        provider_reference: Optional[str] = None,
        checkout_url: Optional[str] = None,
    ) -> None:
        row = self.store.transactions[transaction_id]
        if provider_reference and not row.provider_reference:
            row.provider_reference = provider_reference
        if checkout_url:
            row.checkout_url = checkout_url

    async def list_stale(self, states, updated_before: datetime, limit: int = 100) -> List[PaymentTransaction]:
        wanted = set(states)
        rows = [
            r for r in self.store.transactions.values()
            if r.state in wanted and r.updated_at and r.updated_at < updated_before
        ]
        rows.sort(key=lambda r: r.updated_at)
        return [copy.deepcopy(r) for r in rows[:limit]]


class FakeOrderRepository(OrderRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, order: Order) -> Order:
        row = copy.deepcopy(order)
        row.id = row.id or _new_id()
        for item in row.items:
            item.id = item.id or _new_id()
            item.order_id = row.id
        self.store.orders[row.id] = row
        return copy.deepcopy(row)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        row = self.store.orders.get(order_id)
        return copy.deepcopy(row) if row else None

    async def update_status(self, order: Order) -> Order:
        self.store.orders[order.id].status = order.status
        return order


class FakeSubscriptionRepository(SubscriptionRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, subscription: Subscription) -> Subscription:
        row = copy.deepcopy(subscription)
        row.id = row.id or _new_id()
        self.store.subscriptions[row.id] = row
        return copy.deepcopy(row)

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        row = self.store.subscriptions.get(subscription_id)
        return copy.deepcopy(row) if row else None

    async def get_by_seller(self, seller_id: str) -> Optional[Subscription]:
        for row in self.store.subscriptions.values():
            if row.seller_id == seller_id:
                return copy.deepcopy(row)
        return None

    async def update(self, subscription: Subscription) -> Subscription:
        if subscription.id not in self.store.subscriptions:
            raise SubscriptionNotFound(str(subscription.id))
        self.store.subscriptions[subscription.id] = copy.deepcopy(subscription)
        return copy.deepcopy(subscription)

    async def list_due_for_rollover(self, now: datetime, limit: int = 100) -> List[Subscription]:
        rows = [
            r for r in self.store.subscriptions.values()
            if r.scheduled_plan and r.expires_at and r.expires_at <= now and not r.is_cancelled
        ]
        return [copy.deepcopy(r) for r in rows[:limit]]


class FakeEarningRepository(EarningRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, earning: SellerEarning) -> SellerEarning:
        for row in self.store.earnings.values():
            if row.order_item_id == earning.order_item_id:
                return copy.deepcopy(row)
        row = copy.deepcopy(earning)
        row.id = row.id or _new_id()
        self.store.earnings[row.id] = row
        return copy.deepcopy(row)

    async def exists_for_order(self, order_id: str) -> bool:
        return any(r.order_id == order_id for r in self.store.earnings.values())

    async def sum_net_completed(self, seller_id: str, currency: str) -> int:
        return sum(
            r.net_amount for r in self.store.earnings.values()
            if r.seller_id == seller_id and r.currency == currency
        )


class FakeWithdrawalRepository(WithdrawalRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def lock_seller(self, seller_id: str) -> None:
        self.store.seller_locks.append(seller_id)

    async def create(self, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
        row = copy.deepcopy(withdrawal)
        row.id = row.id or _new_id()
        self.store.withdrawals[row.id] = row
        return copy.deepcopy(row)

    async def get_by_id(self, withdrawal_id: str) -> Optional[WithdrawalRequest]:
        row = self.store.withdrawals.get(withdrawal_id)
        return copy.deepcopy(row) if row else None

    async def update(self, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
        self.store.withdrawals[withdrawal.id] = copy.deepcopy(withdrawal)
        return copy.deepcopy(withdrawal)

    async def sum_amount(self, seller_id: str, currency: str, statuses: Iterable[WithdrawalStatus]) -> int:
        wanted = set(statuses)
        return sum(
            r.amount for r in self.store.withdrawals.values()
            if r.seller_id == seller_id and r.currency == currency and r.status in wanted
        )


class FakeUnitOfWork(AbstractUnitOfWork):
    """Writes go straight to the store; rollback is a no-op."""

    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self.store = store

    async def __aenter__(self) -> "FakeUnitOfWork":
        self.transaction_repository = FakeTransactionRepository(self.store)
        self.order_repository = FakeOrderRepository(self.store)
        self.subscription_repository = FakeSubscriptionRepository(self.store)
        self.earning_repository = FakeEarningRepository(self.store)
        self.withdrawal_repository = FakeWithdrawalRepository(self.store)
        return self

    async def commit(self) -> None:
        self._committed = True

    async def rollback(self) -> None:
        self._committed = False


class StubProvider:
    """Provider double: validates payers like the real adapters, records calls."""

    def __init__(self, kind: ProviderKind = ProviderKind.PUSH) -> None:
        self.kind = kind
        self.initiated: List[InitiatePayment] = []
        self.status_checks: List[str] = []
        self.statuses: dict[str, ProviderStatus] = {}
        self.fail_with: Optional[Exception] = None
        # awaited inside initiate() before it returns
        self.before_return = None

    def validate_payer(self, payer: PayerDetails) -> PayerDetails:
        if self.kind == ProviderKind.HOSTED:
            if not payer.customer or not payer.customer.email:
                raise InvalidPayerHandle("customer email required", provider="stub", field="customer.email")
            return payer
        phone = normalize_phone(payer.phone)
        network = (payer.network or "").upper()
        if network not in SUPPORTED_NETWORKS:
            raise InvalidPayerHandle("unsupported network", provider="stub", field="network")
        return PayerDetails(phone=phone, network=network)

    async def initiate(self, request: InitiatePayment) -> ProviderReference:
        self.initiated.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        if self.before_return is not None:
            await self.before_return(request)
        reference = f"PR-{request.idempotency_reference}"
        if self.kind == ProviderKind.HOSTED:
            return ProviderReference(
                provider_reference=request.idempotency_reference,
                checkout_url=f"https://checkout.test/{request.idempotency_reference}",
            )
        return ProviderReference(provider_reference=reference)

    async def check_status(self, provider_reference: str) -> ProviderStatus:
        self.status_checks.append(provider_reference)
        return self.statuses.get(
            provider_reference,
            ProviderStatus(provider_reference=provider_reference, status="pending", raw_status="PROCESSING"),
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookNotification:
        if headers.get("x-test-signature") != "ok":
            raise InvalidSignature("bad signature", provider="stub")
        payload = json.loads(body)
        return WebhookNotification(provider_kind=self.kind, **payload)

    async def aclose(self) -> None:
        return None


class ServiceGraph:
    """The application services wired to one in-memory store and stub providers."""

    def __init__(self, *, upgrade_charge: str = "delta", fee_rate: Decimal = Decimal("0.02")) -> None:
        self.store = InMemoryStore()
        self.providers = {
            ProviderKind.PUSH: StubProvider(ProviderKind.PUSH),
            ProviderKind.HOSTED: StubProvider(ProviderKind.HOSTED),
        }
        self.now = NOW
        self.settlement = SettlementService(cycle_days=30, clock=lambda: self.now)
        self.orchestrator = PaymentOrchestrator(
            self.uow,
            self.provider_for,
            self.settlement,
            callback_base_url="https://shop.test",
        )
        self.reconciliation = ReconciliationService(
            self.uow,
            self.provider_for,
            self.settlement,
            self.orchestrator,
            amount_tolerance=1,
        )
        self.billing = BillingService(
            self.uow,
            self.orchestrator,
            cycle_days=30,
            upgrade_charge=upgrade_charge,
            clock=lambda: self.now,
        )
        self.payouts = PayoutService(self.uow, self.orchestrator, self.provider_for, fee_rate=fee_rate)

    def uow(self, **kwargs) -> FakeUnitOfWork:
        return FakeUnitOfWork(self.store, **kwargs)

    def provider_for(self, kind: ProviderKind) -> StubProvider:
        return self.providers[ProviderKind(kind)]

    @property
    def push(self) -> StubProvider:
        return self.providers[ProviderKind.PUSH]

    @property
    def hosted(self) -> StubProvider:
        return self.providers[ProviderKind.HOSTED]

    async def confirm(self, transaction: PaymentTransaction, status: str = "successful", **extra):
        """Deliver a verified provider notification for `transaction`."""
        notification = WebhookNotification(
            provider_kind=transaction.provider_kind,
            status=status,
            idempotency_reference=transaction.idempotency_reference,
            **extra,
        )
        return await self.reconciliation.process(notification)


PUSH_PAYER = PayerDetails(phone="0712345678", network="mpesa")
