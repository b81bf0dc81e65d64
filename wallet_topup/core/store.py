"""
Persistence contract consumed by the orchestrator and polling supervisor.

``unit_of_work`` operations share one database transaction that commits when
the context exits cleanly. The polling flag operations and the standalone
``update_status`` run in their own short transactions.

``update_status`` is conditional: it only overwrites an allowed predecessor
status (see ``core.models.ALLOWED_SOURCES``) and returns whether a row changed.
"""
from typing import Any, AsyncContextManager, Dict, Optional, Protocol

from .models import GatewayTransaction, NewTransaction, TransactionStatus

EVENT_TRANSACTION_CREATED = "transaction.created"
EVENT_WALLET_RESPONSE = "gateway.wallet_response"
EVENT_INQUIRY_RESPONSE = "gateway.inquiry_response"
EVENT_STATUS_CHANGED = "transaction.status_changed"
EVENT_TIMED_OUT = "transaction.timed_out"


class StoreError(Exception):
    """Raised when the transactional store cannot complete an operation."""

    pass


class TransactionUnitOfWork(Protocol):
    async def lock_idempotency_key(self, idempotency_key: str) -> None:
        """Serialize on ``idempotency_key`` until the unit of work ends."""
        ...

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[GatewayTransaction]:
        ...

    async def create_transaction(self, new: NewTransaction) -> GatewayTransaction:
        ...

    async def update_status(self, txn_ref_no: str, status: TransactionStatus) -> bool:
        ...

    async def record_event(
        self, txn_ref_no: str, event_type: str, event_data: Dict[str, Any]
    ) -> None:
        ...


class TransactionStore(Protocol):
    def unit_of_work(self) -> AsyncContextManager[TransactionUnitOfWork]:
        ...

    async def get_by_txn_ref(self, txn_ref_no: str) -> Optional[GatewayTransaction]:
        ...

    async def update_status(
        self,
        txn_ref_no: str,
        status: TransactionStatus,
        event_type: str = EVENT_STATUS_CHANGED,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        ...

    async def claim_polling(self, txn_ref_no: str) -> bool:
        """Set the polling flag if it is clear. Returns False if already set."""
        ...

    async def clear_polling(self, txn_ref_no: str) -> None:
        ...
