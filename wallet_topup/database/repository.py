"""
SQLAlchemy implementation of the transaction store.

Status writes are conditional updates, so the state machine holds even when a
request and a polling loop race on the same transaction.
"""
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from sqlalchemy import false, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from wallet_topup.core.idempotency import KeyedLock
from wallet_topup.core.models import (
    ALLOWED_SOURCES,
    GatewayTransaction,
    NewTransaction,
    PaymentMethod,
    TransactionStatus,
)
from wallet_topup.core.reconciliation import as_utc
from wallet_topup.core.store import EVENT_STATUS_CHANGED, StoreError
from wallet_topup.database.connection import create_session_factory
from wallet_topup.database.models import (
    GatewayTransactionEvent,
    GatewayTransactionModel,
    IdempotencyLock,
)

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_domain(row: GatewayTransactionModel) -> GatewayTransaction:
    return GatewayTransaction(
        id=row.id,
        user_id=row.user_id,
        idempotency_key=row.idempotency_key,
        bill_ref_id=row.bill_ref_id,
        txn_ref_no=row.txn_ref_no,
        method=PaymentMethod(row.payment_method),
        amount=row.amount,
        status=TransactionStatus(row.status),
        polling_active=row.polling_active,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


async def _conditional_status_update(
    session: AsyncSession, txn_ref_no: str, status: TransactionStatus
) -> bool:
    sources = [source.value for source in ALLOWED_SOURCES[status]]
    if not sources:
        return False

    result = await session.execute(
        update(GatewayTransactionModel)
        .where(
            GatewayTransactionModel.txn_ref_no == txn_ref_no,
            GatewayTransactionModel.status.in_(sources),
        )
        .values(status=status.value, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def _event(txn_ref_no: str, event_type: str, event_data: Dict[str, Any]) -> GatewayTransactionEvent:
    return GatewayTransactionEvent(
        txn_ref_no=txn_ref_no,
        event_type=event_type,
        event_data=event_data,
        created_at=_utcnow(),
    )


class SqlUnitOfWork:
    """Operations that share the caller's database transaction."""

    def __init__(
        self,
        session: AsyncSession,
        keyed_lock: KeyedLock,
        exit_stack: AsyncExitStack,
        dialect_name: str,
    ):
        self.session = session
        self._keyed_lock = keyed_lock
        self._exit_stack = exit_stack
        self._dialect_name = dialect_name

    async def lock_idempotency_key(self, idempotency_key: str) -> None:
        """
        Serialize on ``idempotency_key`` until after commit.

        The in-process lock is released by the outer exit stack, after the
        session transaction has committed or rolled back.
        """
        await self._exit_stack.enter_async_context(self._keyed_lock.hold(idempotency_key))

        if self._dialect_name == "postgresql":
            await self.session.execute(
                pg_insert(IdempotencyLock)
                .values(idempotency_key=idempotency_key, created_at=_utcnow())
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
            )
            await self.session.execute(
                select(IdempotencyLock.idempotency_key)
                .where(IdempotencyLock.idempotency_key == idempotency_key)
                .with_for_update()
            )

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[GatewayTransaction]:
        result = await self.session.execute(
            select(GatewayTransactionModel).where(
                GatewayTransactionModel.idempotency_key == idempotency_key
            )
        )
        row = result.scalar_one_or_none()
        return _to_domain(row) if row is not None else None

    async def create_transaction(self, new: NewTransaction) -> GatewayTransaction:
        now = _utcnow()
        row = GatewayTransactionModel(
            id=new.id,
            user_id=new.user_id,
            idempotency_key=new.idempotency_key,
            bill_ref_id=new.bill_ref_id,
            txn_ref_no=new.txn_ref_no,
            payment_method=new.method.value,
            amount=new.amount,
            status=TransactionStatus.PENDING.value,
            polling_active=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_domain(row)

    async def update_status(self, txn_ref_no: str, status: TransactionStatus) -> bool:
        return await _conditional_status_update(self.session, txn_ref_no, status)

    async def record_event(
        self, txn_ref_no: str, event_type: str, event_data: Dict[str, Any]
    ) -> None:
        self.session.add(_event(txn_ref_no, event_type, event_data))


class SqlTransactionStore:
    """
    Transaction store backed by an async SQLAlchemy engine.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        keyed_lock: Optional[KeyedLock] = None,
    ):
        self.engine = engine
        self._session_factory = session_factory or create_session_factory(engine)
        self._keyed_lock = keyed_lock or KeyedLock()
        self._dialect_name = engine.dialect.name

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[SqlUnitOfWork]:
        """
        One database transaction; commits when the block exits cleanly.

        Raises:
            StoreError: On any database failure, including the commit
        """
        async with AsyncExitStack() as stack:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        yield SqlUnitOfWork(session, self._keyed_lock, stack, self._dialect_name)
            except SQLAlchemyError as e:
                logger.error("unit_of_work_failed", error=str(e), error_type=type(e).__name__)
                raise StoreError(str(e)) from e

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", error=str(e), error_type=type(e).__name__)
            raise StoreError(str(e)) from e

    async def get_by_txn_ref(self, txn_ref_no: str) -> Optional[GatewayTransaction]:
        async with self._transaction() as session:
            result = await session.execute(
                select(GatewayTransactionModel).where(
                    GatewayTransactionModel.txn_ref_no == txn_ref_no
                )
            )
            row = result.scalar_one_or_none()
            return _to_domain(row) if row is not None else None

    async def update_status(
        self,
        txn_ref_no: str,
        status: TransactionStatus,
        event_type: str = EVENT_STATUS_CHANGED,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Conditionally move ``txn_ref_no`` to ``status`` and record an event.

        Returns:
            bool: False if the stored status may not be overwritten
        """
        async with self._transaction() as session:
            updated = await _conditional_status_update(session, txn_ref_no, status)
            if updated:
                data = {"to": status.value}
                data.update(event_data or {})
                session.add(_event(txn_ref_no, event_type, data))

        logger.info(
            "transaction_status_update",
            txn_ref_no=txn_ref_no,
            status=status.value,
            updated=updated,
        )
        return updated

    async def claim_polling(self, txn_ref_no: str) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                update(GatewayTransactionModel)
                .where(
                    GatewayTransactionModel.txn_ref_no == txn_ref_no,
                    GatewayTransactionModel.polling_active == false(),
                )
                .values(polling_active=True, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def clear_polling(self, txn_ref_no: str) -> None:
        async with self._transaction() as session:
            await session.execute(
                update(GatewayTransactionModel)
                .where(GatewayTransactionModel.txn_ref_no == txn_ref_no)
                .values(polling_active=False, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
