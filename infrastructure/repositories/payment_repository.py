"""
账本仓储实现 - 使用SQLAlchemy实现数据访问

状态转换使用条件更新（UPDATE ... WHERE id = ? AND state IN (...)），
以受影响行数判断本次调用是否完成了转换。
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import PaymentTransaction, TransactionState
from domain.payment.repository import TransactionRepository
from domain.payment.service import DuplicateIdempotencyKey
from infrastructure.models.payment import PaymentTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyTransactionRepository(TransactionRepository):
    """账本仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> PaymentTransaction:
        """将数据库模型转换为领域实体"""
        return PaymentTransaction(
            id=model.id,
            user_id=model.user_id,
            amount=int(model.amount),
            currency=model.currency,
            purpose=model.purpose,
            provider_kind=model.provider_kind,
            idempotency_reference=model.idempotency_reference,
            state=model.state,
            provider_reference=model.provider_reference,
            description=model.description or "",
            linked_entity_id=model.linked_entity_id,
            failure_reason=model.failure_reason,
            checkout_url=model.checkout_url,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: PaymentTransaction) -> PaymentTransactionModel:
        """将领域实体转换为数据库模型"""
        model = PaymentTransactionModel(
            user_id=entity.user_id,
            amount=entity.amount,
            currency=entity.currency,
            purpose=entity.purpose.value,
            provider_kind=entity.provider_kind.value,
            idempotency_reference=entity.idempotency_reference,
            state=entity.state.value,
            provider_reference=entity.provider_reference,
            description=entity.description,
            linked_entity_id=entity.linked_entity_id,
            failure_reason=entity.failure_reason,
            checkout_url=entity.checkout_url,
        )
        # 空值交给列默认值（uuid / 当前时间）
        if entity.id:
            model.id = entity.id
        if entity.created_at:
            model.created_at = entity.created_at
        if entity.updated_at:
            model.updated_at = entity.updated_at
        return model

    async def _fetch_one(self, *criteria) -> Optional[PaymentTransaction]:
        # populate_existing: 条件更新绕过了 identity map，需要重新加载
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        db_tx = result.scalars().first()
        return self._to_entity(db_tx) if db_tx else None

    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """创建账本行"""
        try:
            db_tx = self._to_model(transaction)
            self.session.add(db_tx)
            await self.session.flush()
            await self.session.refresh(db_tx)
        except IntegrityError as e:
            msg = str(e).lower()
            if "idempotency_reference" in msg or "unique" in msg:
                logger.warning(
                    "ledger_create_conflict",
                    idempotency_reference=transaction.idempotency_reference,
                )
                raise DuplicateIdempotencyKey(transaction.idempotency_reference) from e
            raise
        logger.info(
            "ledger_row_inserted",
            transaction_id=db_tx.id,
            idempotency_reference=db_tx.idempotency_reference,
        )
        return self._to_entity(db_tx)

    async def get_by_id(self, transaction_id: str) -> Optional[PaymentTransaction]:
        return await self._fetch_one(PaymentTransactionModel.id == transaction_id)

    async def get_by_idempotency_reference(self, reference: str) -> Optional[PaymentTransaction]:
        return await self._fetch_one(PaymentTransactionModel.idempotency_reference == reference)

    async def get_by_provider_reference(self, provider_reference: str) -> Optional[PaymentTransaction]:
        return await self._fetch_one(PaymentTransactionModel.provider_reference == provider_reference)

    async def compare_and_set_state(
        self,
        transaction_id: str,
        from_states: Iterable[TransactionState],
        to_state: TransactionState,
        *,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        values = {
            "state": to_state.value,
            "updated_at": datetime.now(timezone.utc),
        }
        if provider_reference:
            # 已有引用不覆盖
            values["provider_reference"] = func.coalesce(
                PaymentTransactionModel.provider_reference, provider_reference
            )
        if failure_reason:
            values["failure_reason"] = failure_reason

        stmt = (
            update(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.id == transaction_id,
                PaymentTransactionModel.state.in_([TransactionState(s).value for s in from_states]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def set_provider_details(
        self,
        transaction_id: str,
        *,
        provider_reference: Optional[str] = None,
        checkout_url: Optional[str] = None,
    ) -> None:
        if provider_reference:
            await self.session.execute(
                update(PaymentTransactionModel)
                .where(
                    PaymentTransactionModel.id == transaction_id,
                    PaymentTransactionModel.provider_reference.is_(None),
                )
                .values(provider_reference=provider_reference)
                .execution_options(synchronize_session=False)
            )
        if checkout_url:
            await self.session.execute(
                update(PaymentTransactionModel)
                .where(PaymentTransactionModel.id == transaction_id)
                .values(checkout_url=checkout_url)
                .execution_options(synchronize_session=False)
            )

    async def list_stale(
        self,
        states: Iterable[TransactionState],
        updated_before: datetime,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.state.in_([TransactionState(s).value for s in states]),
                PaymentTransactionModel.updated_at < updated_before,
            )
            .order_by(PaymentTransactionModel.updated_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
