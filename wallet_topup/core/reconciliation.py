"""
Reconciliation of a transaction that already exists for an idempotency key.

Terminal transactions are answered from the store. Non-terminal ones get one
synchronous inquiry; if the gateway still has no final answer and the
transaction is older than the reconciliation deadline, it is failed.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from wallet_topup.integrations.jazzcash_client import GatewayResult, JazzCashClient
from wallet_topup.monitoring.metrics import metrics

from .models import GatewayTransaction, TopUpResult, TransactionStatus
from .store import (
    EVENT_INQUIRY_RESPONSE,
    EVENT_STATUS_CHANGED,
    EVENT_TIMED_OUT,
    TransactionUnitOfWork,
)

logger = structlog.get_logger(__name__)

MESSAGE_ALREADY_COMPLETED = "Transaction has already completed"
MESSAGE_ALREADY_FAILED = "Transaction has failed"
MESSAGE_TIMED_OUT = "Transaction has timed out. Please try again."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes read back from the database as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def cached_result(txn: GatewayTransaction) -> TopUpResult:
    """Result for a transaction whose stored status is terminal."""
    message = (
        MESSAGE_ALREADY_COMPLETED
        if txn.status is TransactionStatus.SUCCESS
        else MESSAGE_ALREADY_FAILED
    )
    return TopUpResult(
        id=txn.id,
        txn_ref_no=txn.txn_ref_no,
        status=txn.status,
        message=message,
        amount=txn.amount,
    )


class Reconciler:
    """Resolves the current status of an existing transaction."""

    def __init__(
        self,
        gateway: JazzCashClient,
        timeout_seconds: float = 120,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock or utcnow

    def is_expired(self, txn: GatewayTransaction) -> bool:
        return self._clock() - as_utc(txn.created_at) > self.timeout

    async def reconcile(
        self, txn: GatewayTransaction, uow: TransactionUnitOfWork
    ) -> TopUpResult:
        """
        Reconcile ``txn`` inside the caller's unit of work.

        Args:
            txn: Existing transaction
            uow: Unit of work holding the idempotency lock

        Returns:
            TopUpResult: Client-visible result

        Raises:
            GatewayError: If the inquiry call fails
        """
        if txn.status.is_terminal:
            logger.info(
                "reconcile_cached_terminal",
                txn_ref_no=txn.txn_ref_no,
                status=txn.status.value,
            )
            metrics.record_idempotent_replay(txn.status.value)
            return cached_result(txn)

        result: GatewayResult = await self.gateway.inquiry(txn.txn_ref_no)
        await uow.record_event(
            txn.txn_ref_no,
            EVENT_INQUIRY_RESPONSE,
            {"status": result.status.value, "response": dict(result.raw)},
        )

        status = TransactionStatus.from_gateway(result.status)
        if status.is_terminal:
            return await self._transition(txn, uow, status, result.message)

        if self.is_expired(txn):
            logger.warning(
                "reconcile_deadline_exceeded",
                txn_ref_no=txn.txn_ref_no,
                created_at=as_utc(txn.created_at).isoformat(),
            )
            await uow.record_event(
                txn.txn_ref_no,
                EVENT_TIMED_OUT,
                {"last_response_code": result.status_code},
            )
            return await self._transition(
                txn, uow, TransactionStatus.FAILED, MESSAGE_TIMED_OUT
            )

        metrics.record_idempotent_replay(TransactionStatus.PENDING.value)
        return TopUpResult(
            id=txn.id,
            txn_ref_no=txn.txn_ref_no,
            status=TransactionStatus.PENDING,
            message=result.message,
            amount=txn.amount,
        )

    async def _transition(
        self,
        txn: GatewayTransaction,
        uow: TransactionUnitOfWork,
        status: TransactionStatus,
        message: str,
    ) -> TopUpResult:
        updated = await uow.update_status(txn.txn_ref_no, status)
        if not updated:
            # Another writer (a polling loop) reached a terminal status first
            current = await uow.get_by_idempotency_key(txn.idempotency_key)
            if current is not None and current.status.is_terminal:
                logger.info(
                    "reconcile_lost_race",
                    txn_ref_no=txn.txn_ref_no,
                    status=current.status.value,
                )
                metrics.record_idempotent_replay(current.status.value)
                return cached_result(current)
        else:
            await uow.record_event(
                txn.txn_ref_no,
                EVENT_STATUS_CHANGED,
                {"from": txn.status.value, "to": status.value},
            )

        logger.info(
            "reconcile_status_updated",
            txn_ref_no=txn.txn_ref_no,
            status=status.value,
        )
        metrics.record_idempotent_replay(status.value)
        return TopUpResult(
            id=txn.id,
            txn_ref_no=txn.txn_ref_no,
            status=status,
            message=message,
            amount=txn.amount,
        )
