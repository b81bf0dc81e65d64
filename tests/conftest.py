"""
Pytest configuration and fixtures.
"""
import os

# Settings are read from the environment on first use
os.environ.setdefault("JAZZCASH_MERCHANT_ID", "MC10001")
os.environ.setdefault("JAZZCASH_PASSWORD", "merchant-pass")
os.environ.setdefault("JAZZCASH_INTEGRITY_SALT", "testsalt123")
os.environ.setdefault("JAZZCASH_RETURN_URL", "https://wallet.example.test/payments/return")
os.environ.setdefault(
    "JAZZCASH_WALLET_PAYMENT_URL",
    "https://sandbox.jazzcash.test/ApplicationAPI/API/2.0/Purchase/DoMWalletTransaction",
)
os.environ.setdefault(
    "JAZZCASH_CARD_PAYMENT_URL",
    "https://sandbox.jazzcash.test/CustomerPortal/transactionmanagement/merchantform/",
)
os.environ.setdefault(
    "JAZZCASH_STATUS_INQUIRY_URL",
    "https://sandbox.jazzcash.test/ApplicationAPI/API/PaymentInquiry/Inquire",
)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import asyncio
import dataclasses
import json
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from wallet_topup.config import Settings, get_settings
from wallet_topup.core.idempotency import KeyedLock
from wallet_topup.core.models import (
    GatewayTransaction,
    NewTransaction,
    PaymentMethod,
    TransactionStatus,
    can_transition,
)
from wallet_topup.core.payment_orchestrator import PaymentOrchestrator
from wallet_topup.core.store import EVENT_STATUS_CHANGED, StoreError
from wallet_topup.integrations.jazzcash_client import JazzCashClient
from wallet_topup.integrations.secure_hash import SECURE_HASH_FIELD, SecureHashCodec

TEST_SALT = "testsalt123"


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        jazzcash_merchant_id="MC10001",
        jazzcash_password="merchant-pass",
        jazzcash_integrity_salt=TEST_SALT,
        jazzcash_return_url="https://wallet.example.test/payments/return",
        jazzcash_wallet_payment_url=get_settings().jazzcash_wallet_payment_url,
        jazzcash_card_payment_url=get_settings().jazzcash_card_payment_url,
        jazzcash_status_inquiry_url=get_settings().jazzcash_status_inquiry_url,
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="wallet-topup-test",
        app_env="test",
        log_level="WARNING",
        polling_interval_seconds=0.01,
        polling_deadline_seconds=0.5,
        reconciliation_timeout_seconds=120,
    )


@pytest.fixture
def codec() -> SecureHashCodec:
    """Codec sharing the test integrity salt."""
    return SecureHashCodec(TEST_SALT)


def signed(codec: SecureHashCodec, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``fields`` with a valid pp_SecureHash."""
    payload = dict(fields)
    payload[SECURE_HASH_FIELD] = codec.sign({k: str(v) for k, v in fields.items()})
    return payload


class FakeJazzCash:
    """
    In-process JazzCash endpoint served through ``httpx.MockTransport``.

    Wallet responses use ``wallet_code``. Inquiry responses consume
    ``inquiry_codes`` in order and repeat the last one. An entry may also be
    an exception instance (raised as a transport failure) or a callable
    returning an ``httpx.Response``.
    """

    def __init__(self, codec: SecureHashCodec, settings: Settings):
        self.codec = codec
        self.settings = settings
        self.wallet_code = "000"
        self.wallet_error: Optional[Exception] = None
        self.inquiry_codes: List[Any] = ["121"]
        self.delay = 0.0
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def calls(self, kind: str) -> int:
        return sum(1 for name, _ in self.requests if name == kind)

    def _kind(self, url: str) -> str:
        if url == self.settings.jazzcash_wallet_payment_url:
            return "wallet"
        if url == self.settings.jazzcash_status_inquiry_url:
            return "inquiry"
        return "other"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        kind = self._kind(str(request.url))
        body = json.loads(request.content)
        self.requests.append((kind, body))

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if kind == "wallet":
            if self.wallet_error is not None:
                raise self.wallet_error
            payload = {
                "pp_ResponseCode": self.wallet_code,
                "pp_ResponseMessage": "wallet response",
                "pp_TxnRefNo": body.get("pp_TxnRefNo", ""),
                "pp_RetreivalReferenceNo": "RRN0001",
            }
            return httpx.Response(200, json=signed(self.codec, payload))

        if kind == "inquiry":
            entry = self.inquiry_codes[0]
            if len(self.inquiry_codes) > 1:
                self.inquiry_codes.pop(0)
            if isinstance(entry, Exception):
                raise entry
            if callable(entry):
                return entry(request)
            payload = {
                "pp_ResponseCode": "000",
                "pp_PaymentResponseCode": entry,
                "pp_TxnRefNo": body.get("pp_TxnRefNo", ""),
                "pp_RetreivalReferenceNo": "RRN0002",
            }
            return httpx.Response(200, json=signed(self.codec, payload))

        return httpx.Response(404)


@pytest.fixture
def jazzcash(codec: SecureHashCodec, test_settings: Settings) -> FakeJazzCash:
    """Fake JazzCash endpoint."""
    return FakeJazzCash(codec, test_settings)


@pytest_asyncio.fixture
async def gateway_client(
    test_settings: Settings, jazzcash: FakeJazzCash
) -> AsyncGenerator[JazzCashClient, Any]:
    """JazzCash client wired to the fake endpoint."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(jazzcash.handler))
    client = JazzCashClient(test_settings, http_client=http_client)
    yield client
    await http_client.aclose()


@pytest.fixture
def make_client(test_settings: Settings) -> Callable[[Callable[..., Any]], JazzCashClient]:
    """Build a JazzCash client around an arbitrary MockTransport handler."""

    def factory(handler: Callable[..., Any]) -> JazzCashClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return JazzCashClient(test_settings, http_client=http_client)

    return factory


class InMemoryUnitOfWork:
    """Unit of work over ``InMemoryTransactionStore`` with an undo log."""

    def __init__(self, store: "InMemoryTransactionStore", exit_stack: AsyncExitStack):
        self.store = store
        self._exit_stack = exit_stack
        self._undo: List[Callable[[], None]] = []

    def rollback(self) -> None:
        for undo in reversed(self._undo):
            undo()
        self._undo.clear()

    async def lock_idempotency_key(self, idempotency_key: str) -> None:
        await self._exit_stack.enter_async_context(self.store.keyed_lock.hold(idempotency_key))
        self.store.lock_calls += 1

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[GatewayTransaction]:
        await asyncio.sleep(0)
        for txn in self.store.transactions.values():
            if txn.idempotency_key == idempotency_key:
                return dataclasses.replace(txn)
        return None

    async def create_transaction(self, new: NewTransaction) -> GatewayTransaction:
        await asyncio.sleep(0)
        if any(t.idempotency_key == new.idempotency_key for t in self.store.transactions.values()):
            raise StoreError("duplicate idempotency key")
        if new.txn_ref_no in self.store.transactions:
            raise StoreError("duplicate txn_ref_no")

        txn = self.store.build(new)
        self.store.transactions[txn.txn_ref_no] = txn
        self.store.created += 1
        self._undo.append(lambda: self.store.transactions.pop(txn.txn_ref_no, None))
        return dataclasses.replace(txn)

    async def update_status(self, txn_ref_no: str, status: TransactionStatus) -> bool:
        if self.store.fail_status_writes:
            raise StoreError("status write failed")
        txn = self.store.transactions.get(txn_ref_no)
        if txn is None or not can_transition(txn.status, status):
            return False
        previous = txn.status
        txn.status = status

        def undo() -> None:
            txn.status = previous

        self._undo.append(undo)
        return True

    async def record_event(
        self, txn_ref_no: str, event_type: str, event_data: Dict[str, Any]
    ) -> None:
        event = (txn_ref_no, event_type, event_data)
        self.store.events.append(event)
        self._undo.append(lambda: self.store.events.remove(event))


class InMemoryTransactionStore:
    """Transaction store double implementing the persistence contract."""

    def __init__(self) -> None:
        self.transactions: Dict[str, GatewayTransaction] = {}
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []
        self.keyed_lock = KeyedLock()
        self.fail_status_writes = False
        self.lock_calls = 0
        self.created = 0

    @staticmethod
    def build(new: NewTransaction, created_at: Optional[datetime] = None) -> GatewayTransaction:
        now = created_at or datetime.now(timezone.utc)
        return GatewayTransaction(
            id=new.id,
            user_id=new.user_id,
            idempotency_key=new.idempotency_key,
            bill_ref_id=new.bill_ref_id,
            txn_ref_no=new.txn_ref_no,
            method=new.method,
            amount=new.amount,
            status=TransactionStatus.PENDING,
            polling_active=False,
            created_at=now,
            updated_at=now,
        )

    def seed(
        self,
        user_id: str = "user-1",
        idempotency_key: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.PENDING,
        method: PaymentMethod = PaymentMethod.WALLET,
        age_seconds: float = 0,
        txn_ref_no: Optional[str] = None,
        amount: int = 50000,
    ) -> GatewayTransaction:
        """Insert an existing transaction directly."""
        new = NewTransaction(
            user_id=user_id,
            idempotency_key=idempotency_key or str(uuid.uuid4()),
            bill_ref_id="BILL1736150000ABC",
            txn_ref_no=txn_ref_no or f"GIKITU20250106{uuid.uuid4().hex[:3].upper()}",
            method=method,
            amount=amount,
        )
        txn = self.build(new, datetime.now(timezone.utc) - timedelta(seconds=age_seconds))
        txn.status = status
        self.transactions[txn.txn_ref_no] = txn
        return txn

    def by_key(self, idempotency_key: str) -> Optional[GatewayTransaction]:
        for txn in self.transactions.values():
            if txn.idempotency_key == idempotency_key:
                return txn
        return None

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[InMemoryUnitOfWork]:
        async with AsyncExitStack() as stack:
            uow = InMemoryUnitOfWork(self, stack)
            try:
                yield uow
            except BaseException:
                uow.rollback()
                raise

    async def get_by_txn_ref(self, txn_ref_no: str) -> Optional[GatewayTransaction]:
        txn = self.transactions.get(txn_ref_no)
        return dataclasses.replace(txn) if txn is not None else None

    async def update_status(
        self,
        txn_ref_no: str,
        status: TransactionStatus,
        event_type: str = EVENT_STATUS_CHANGED,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        txn = self.transactions.get(txn_ref_no)
        if txn is None or not can_transition(txn.status, status):
            return False
        txn.status = status
        self.events.append((txn_ref_no, event_type, dict(event_data or {})))
        return True

    async def claim_polling(self, txn_ref_no: str) -> bool:
        await asyncio.sleep(0)
        txn = self.transactions.get(txn_ref_no)
        if txn is None or txn.polling_active:
            return False
        txn.polling_active = True
        return True

    async def clear_polling(self, txn_ref_no: str) -> None:
        txn = self.transactions.get(txn_ref_no)
        if txn is not None:
            txn.polling_active = False


@pytest.fixture
def store() -> InMemoryTransactionStore:
    """In-memory transaction store."""
    return InMemoryTransactionStore()


@pytest.fixture
def orchestrator(
    gateway_client: JazzCashClient,
    store: InMemoryTransactionStore,
    test_settings: Settings,
) -> PaymentOrchestrator:
    """Orchestrator without a polling supervisor."""
    return PaymentOrchestrator(gateway_client, store, settings=test_settings)
