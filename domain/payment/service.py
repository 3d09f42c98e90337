"""
账本领域服务 - 账本行的创建与状态转换（compare-and-swap）
"""
from typing import Iterable, Optional
from datetime import datetime, timezone

from .entity import (
    PaymentTransaction,
    PaymentPurpose,
    ProviderKind,
    TransactionState,
    TransitionResult,
    validate_transition,
)
from .repository import TransactionRepository
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode
from core.logging_config import get_logger


logger = get_logger(__name__)


class DuplicateIdempotencyKey(BusinessException):
    """幂等引用已存在：调用方应读取已有账本行，而不是重新发起扣款"""
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(
            code=PaymentCode.DUPLICATE_IDEMPOTENCY_KEY,
            message=f"Idempotency reference already used: {reference}",
            error_type="DuplicateIdempotencyKey",
            details={"idempotency_reference": reference},
            message_key="payments.duplicate_reference",
        )


class InvalidTransition(BusinessException):
    """当前状态不在 from_states 内（且不是终态）"""
    def __init__(self, transaction: PaymentTransaction, to_state: TransactionState):
        self.transaction = transaction
        super().__init__(
            code=PaymentCode.INVALID_TRANSITION,
            message=f"Cannot move transaction {transaction.id} from {transaction.state.value} to {to_state.value}",
            error_type="InvalidTransition",
            details={
                "transaction_id": transaction.id,
                "current_state": transaction.state.value,
                "to_state": to_state.value,
            },
        )


class TransactionNotFound(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=PaymentCode.TRANSACTION_NOT_FOUND,
            message=f"Transaction not found: {identifier}",
            error_type="TransactionNotFound",
            details={"transaction": identifier},
            message_key="payments.transaction.not_found",
        )


class UnknownTransaction(BusinessException):
    """回调引用在本系统中不存在（通常是跨环境噪声），记录日志但不重试"""
    def __init__(self, provider_reference: Optional[str], idempotency_reference: Optional[str] = None):
        super().__init__(
            code=PaymentCode.UNKNOWN_TRANSACTION,
            message=f"No ledger row for provider reference {provider_reference!r}",
            error_type="UnknownTransaction",
            details={
                "provider_reference": provider_reference,
                "idempotency_reference": idempotency_reference,
            },
        )


class TransactionLedger:
    """
    账本领域服务

    职责：
    1. 创建账本行（幂等引用唯一）
    2. 以 compare-and-swap 方式推进状态，终态上的重复转换为空操作
    """

    def __init__(self, repository: TransactionRepository):
        self.repository = repository

    async def create(
        self,
        *,
        user_id: str,
        amount: int,
        currency: str,
        purpose: PaymentPurpose,
        provider_kind: ProviderKind,
        idempotency_reference: str,
        description: str = "",
        linked_entity_id: Optional[str] = None,
    ) -> PaymentTransaction:
        """创建 pending 账本行；幂等引用重复时抛出 DuplicateIdempotencyKey"""
        now = datetime.now(timezone.utc)
        transaction = PaymentTransaction(
            id=None,
            user_id=user_id,
            amount=amount,
            currency=currency,
            purpose=purpose,
            provider_kind=provider_kind,
            idempotency_reference=idempotency_reference,
            state=TransactionState.PENDING,
            description=description,
            linked_entity_id=linked_entity_id,
            created_at=now,
            updated_at=now,
        )
        if await self.repository.get_by_idempotency_reference(idempotency_reference):
            raise DuplicateIdempotencyKey(idempotency_reference)
        # 唯一约束兜底并发创建，仓储层同样抛出 DuplicateIdempotencyKey
        return await self.repository.create(transaction)

    async def get(self, transaction_id: str) -> PaymentTransaction:
        transaction = await self.repository.get_by_id(transaction_id)
        if not transaction:
            raise TransactionNotFound(f"id={transaction_id}")
        return transaction

    async def get_by_idempotency_key(self, reference: str) -> Optional[PaymentTransaction]:
        return await self.repository.get_by_idempotency_reference(reference)

    async def get_by_provider_reference(self, provider_reference: str) -> Optional[PaymentTransaction]:
        return await self.repository.get_by_provider_reference(provider_reference)

    async def transition(
        self,
        transaction_id: str,
        from_states: Iterable[TransactionState],
        to_state: TransactionState,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> TransitionResult:
        """
        推进账本状态

        - 当前状态 ∈ from_states：转换生效，applied=True
        - 当前状态为终态：空操作，返回原行，applied=False
        - 当前状态非终态但不在 from_states：抛出 InvalidTransition
        """
        states = [TransactionState(s) for s in from_states]
        validate_transition(states, to_state)

        current = await self.get(transaction_id)
        if current.state in states:
            applied = await self.repository.compare_and_set_state(
                transaction_id,
                states,
                to_state,
                provider_reference=provider_reference,
                failure_reason=failure_reason,
            )
            if applied:
                updated = await self.get(transaction_id)
                logger.info(
                    "ledger_transition_applied",
                    transaction_id=transaction_id,
                    idempotency_reference=updated.idempotency_reference,
                    from_state=current.state.value,
                    to_state=to_state.value,
                )
                return TransitionResult(transaction=updated, applied=True, previous_state=current.state)
            # 读取与 CAS 之间被其他参与方抢先
            current = await self.get(transaction_id)

        if current.is_terminal:
            if current.state == to_state:
                logger.info(
                    "ledger_transition_duplicate",
                    transaction_id=transaction_id,
                    state=current.state.value,
                )
            else:
                logger.warning(
                    "ledger_transition_terminal_conflict",
                    transaction_id=transaction_id,
                    current_state=current.state.value,
                    requested_state=to_state.value,
                )
            return TransitionResult(transaction=current, applied=False, previous_state=current.state)

        if current.state == to_state:
            # 非终态的重复推进（如重复的 processing 通知）
            logger.info("ledger_transition_duplicate", transaction_id=transaction_id, state=current.state.value)
            return TransitionResult(transaction=current, applied=False, previous_state=current.state)

        raise InvalidTransition(current, to_state)

    async def attach_provider_reference(
        self,
        transaction_id: str,
        provider_reference: Optional[str],
        checkout_url: Optional[str] = None,
    ) -> PaymentTransaction:
        """补写提供商引用：已有引用时不覆盖"""
        await self.repository.set_provider_details(
            transaction_id,
            provider_reference=provider_reference,
            checkout_url=checkout_url,
        )
        return await self.get(transaction_id)
