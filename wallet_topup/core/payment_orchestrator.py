"""
Top-up orchestrator with per-key locking and idempotency.

Orchestrates the complete top-up flow:
1. Validate input
2. Lock the idempotency key
3. Return the existing transaction's status if the key was seen before
4. Create a Pending transaction record
5. Call JazzCash (wallet) or sign the redirect form (card)
6. Persist the classified status
7. Commit, release the lock
8. Hand non-terminal wallet transactions to the polling supervisor
"""
import time
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional, Tuple

import structlog

from wallet_topup.config import Settings, get_settings
from wallet_topup.integrations.jazzcash_client import (
    CardInitiateRequest,
    GatewayResult,
    JazzCashClient,
    WalletInitiateRequest,
    gateway_timestamps,
)
from wallet_topup.monitoring.metrics import metrics

from .models import (
    GatewayTransaction,
    NewTransaction,
    PaymentMethod,
    RedirectPayload,
    TopUpRequest,
    TopUpResult,
    TransactionStatus,
)
from .normalization import NormalizationError, normalize_cnic_last6, normalize_phone_number
from .reconciliation import Reconciler, utcnow
from .references import generate_bill_ref_no, generate_txn_ref_no
from .store import (
    EVENT_STATUS_CHANGED,
    EVENT_TRANSACTION_CREATED,
    EVENT_WALLET_RESPONSE,
    StoreError,
    TransactionStore,
    TransactionUnitOfWork,
)

if TYPE_CHECKING:
    from wallet_topup.workers.polling_supervisor import PollingSupervisor

logger = structlog.get_logger(__name__)

CARD_REDIRECT_MESSAGE = "Redirect to JazzCash to complete card payment"


class PaymentError(Exception):
    """Base exception for top-up processing errors."""

    pass


class PaymentValidationError(PaymentError):
    """Raised when top-up input validation fails."""

    pass


class PaymentStoreError(PaymentError):
    """Raised when the transaction store fails; the request is safe to retry."""

    pass


class PaymentOrchestrator:
    """
    Top-up initiation orchestrator.

    Guarantees one gateway transaction per idempotency key, even when the
    same key is submitted concurrently.
    """

    def __init__(
        self,
        gateway: JazzCashClient,
        store: TransactionStore,
        supervisor: Optional["PollingSupervisor"] = None,
        reconciler: Optional[Reconciler] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            gateway: JazzCash client
            store: Transaction store
            supervisor: Optional polling supervisor for non-terminal wallet results
            reconciler: Optional reconciler for repeated idempotency keys
            settings: Optional settings
            clock: Optional UTC clock
        """
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.store = store
        self.supervisor = supervisor
        self._clock = clock or utcnow
        self.reconciler = reconciler or Reconciler(
            gateway,
            timeout_seconds=self.settings.reconciliation_timeout_seconds,
            clock=self._clock,
        )

        logger.info("payment_orchestrator_initialized")

    @staticmethod
    def _validate_request(
        request: TopUpRequest, user_id: str
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Validate a top-up request.

        Returns:
            Tuple[Optional[str], Optional[str]]: Normalized phone and CNIC
            (wallet only)

        Raises:
            PaymentValidationError: If validation fails
        """
        if not user_id:
            raise PaymentValidationError("User ID is required")

        if not request.idempotency_key:
            raise PaymentValidationError("Idempotency key is required")

        if request.amount <= 0:
            raise PaymentValidationError("Amount must be positive")

        if request.method is not PaymentMethod.WALLET:
            return None, None

        try:
            phone = normalize_phone_number(request.phone_number or "")
            cnic = normalize_cnic_last6(request.cnic_last6 or "")
        except NormalizationError as e:
            raise PaymentValidationError(str(e)) from e

        return phone, cnic

    async def initiate(self, request: TopUpRequest, user_id: str) -> TopUpResult:
        """
        Initiate a top-up, or report on the one already created for the key.

        Args:
            request: Top-up request
            user_id: Authenticated caller

        Returns:
            TopUpResult: Client-visible result

        Raises:
            PaymentValidationError: If input validation fails
            PaymentStoreError: If the store fails
            GatewayError: If the gateway exchange fails
        """
        start_time = time.time()
        idempotency_key = request.idempotency_key

        logger.info(
            "topup_initiation_started",
            idempotency_key=idempotency_key,
            user_id=user_id,
            method=request.method.value,
            amount=request.amount,
        )

        phone, cnic = self._validate_request(request, user_id)

        # Set once the gateway has seen this transaction
        gateway_result: Optional[GatewayResult] = None
        txn_ref_no: Optional[str] = None

        try:
            async with self.store.unit_of_work() as uow:
                await uow.lock_idempotency_key(idempotency_key)

                existing = await uow.get_by_idempotency_key(idempotency_key)
                if existing is not None:
                    txn_ref_no = existing.txn_ref_no
                    result = await self._handle_existing(existing, user_id, uow)
                    method = existing.method
                else:
                    txn = await self._create_transaction(request, user_id, uow)
                    txn_ref_no = txn.txn_ref_no
                    method = txn.method

                    if method is PaymentMethod.WALLET:
                        gateway_result = await self._submit_wallet(txn, phone, cnic)
                        result = await self._apply_wallet_result(txn, gateway_result, uow)
                    else:
                        result = self._prepare_card(txn)

        except StoreError as e:
            if gateway_result is not None:
                logger.error(
                    "gateway_side_effect_unrecorded",
                    txn_ref_no=txn_ref_no,
                    response_code=gateway_result.status_code,
                    status=gateway_result.status.value,
                    error=str(e),
                )
            else:
                logger.error(
                    "topup_store_error",
                    idempotency_key=idempotency_key,
                    txn_ref_no=txn_ref_no,
                    error=str(e),
                )
            raise PaymentStoreError(f"Transaction store failure: {e}") from e

        if (
            self.supervisor is not None
            and method is PaymentMethod.WALLET
            and result.status is TransactionStatus.PENDING
        ):
            await self.supervisor.start(result.txn_ref_no)

        duration = time.time() - start_time
        metrics.record_topup_request(method.value, result.status.value, duration)

        logger.info(
            "topup_initiation_completed",
            idempotency_key=idempotency_key,
            txn_ref_no=result.txn_ref_no,
            status=result.status.value,
            duration_seconds=duration,
        )
        return result

    async def _handle_existing(
        self,
        existing: GatewayTransaction,
        user_id: str,
        uow: TransactionUnitOfWork,
    ) -> TopUpResult:
        if existing.user_id != user_id:
            logger.warning(
                "idempotency_key_owner_mismatch",
                idempotency_key=existing.idempotency_key,
                user_id=user_id,
            )
            raise PaymentValidationError("Idempotency key was already used")

        logger.info(
            "topup_idempotent_return",
            idempotency_key=existing.idempotency_key,
            txn_ref_no=existing.txn_ref_no,
            status=existing.status.value,
        )
        return await self.reconciler.reconcile(existing, uow)

    async def _create_transaction(
        self, request: TopUpRequest, user_id: str, uow: TransactionUnitOfWork
    ) -> GatewayTransaction:
        now = self._clock()
        txn = await uow.create_transaction(
            NewTransaction(
                user_id=user_id,
                idempotency_key=request.idempotency_key,
                bill_ref_id=generate_bill_ref_no(now),
                txn_ref_no=generate_txn_ref_no(now, self.settings.jazzcash_timezone),
                method=request.method,
                amount=request.amount,
            )
        )
        await uow.record_event(
            txn.txn_ref_no,
            EVENT_TRANSACTION_CREATED,
            {
                "amount": txn.amount,
                "method": txn.method.value,
                "status": txn.status.value,
            },
        )

        logger.info(
            "transaction_record_created",
            txn_ref_no=txn.txn_ref_no,
            bill_ref_id=txn.bill_ref_id,
            idempotency_key=txn.idempotency_key,
        )
        return txn

    def _timestamps(self) -> Tuple[str, str]:
        return gateway_timestamps(self._clock(), self.settings.jazzcash_timezone)

    async def _submit_wallet(
        self, txn: GatewayTransaction, phone: Optional[str], cnic: Optional[str]
    ) -> GatewayResult:
        txn_datetime, txn_expiry = self._timestamps()
        return await self.gateway.submit_wallet(
            WalletInitiateRequest(
                amount_paisa=txn.amount,
                bill_ref_id=txn.bill_ref_id,
                txn_ref_no=txn.txn_ref_no,
                description=self.settings.txn_description,
                mobile_number=phone or "",
                cnic_last6=cnic or "",
                txn_datetime=txn_datetime,
                txn_expiry_datetime=txn_expiry,
            )
        )

    async def _apply_wallet_result(
        self,
        txn: GatewayTransaction,
        gateway_result: GatewayResult,
        uow: TransactionUnitOfWork,
    ) -> TopUpResult:
        status = TransactionStatus.from_gateway(gateway_result.status)

        await uow.record_event(
            txn.txn_ref_no,
            EVENT_WALLET_RESPONSE,
            {"status": status.value, "response": dict(gateway_result.raw)},
        )

        if status is not TransactionStatus.PENDING:
            await uow.update_status(txn.txn_ref_no, status)
            await uow.record_event(
                txn.txn_ref_no,
                EVENT_STATUS_CHANGED,
                {"from": txn.status.value, "to": status.value},
            )

        logger.info(
            "wallet_result_recorded",
            txn_ref_no=txn.txn_ref_no,
            response_code=gateway_result.status_code,
            status=status.value,
        )

        return TopUpResult(
            id=txn.id,
            txn_ref_no=txn.txn_ref_no,
            status=status.client_visible,
            message=gateway_result.message,
            amount=txn.amount,
        )

    def _prepare_card(self, txn: GatewayTransaction) -> TopUpResult:
        txn_datetime, txn_expiry = self._timestamps()
        redirect = self.gateway.initiate_card(
            CardInitiateRequest(
                amount_paisa=txn.amount,
                bill_ref_id=txn.bill_ref_id,
                txn_ref_no=txn.txn_ref_no,
                description=self.settings.txn_description,
                return_url=self.settings.jazzcash_return_url,
                txn_datetime=txn_datetime,
                txn_expiry_datetime=txn_expiry,
            )
        )
        return TopUpResult(
            id=txn.id,
            txn_ref_no=txn.txn_ref_no,
            status=TransactionStatus.PENDING,
            message=CARD_REDIRECT_MESSAGE,
            amount=txn.amount,
            redirect=RedirectPayload(
                post_url=redirect.post_url,
                fields=redirect.fields,
                return_url=redirect.return_url,
            ),
        )

    async def get_transaction(
        self, txn_ref_no: str, user_id: str
    ) -> Optional[GatewayTransaction]:
        """
        Look up a transaction owned by ``user_id``.

        Returns:
            Optional[GatewayTransaction]: None if missing or owned by another user
        """
        try:
            txn = await self.store.get_by_txn_ref(txn_ref_no)
        except StoreError as e:
            raise PaymentStoreError(f"Transaction store failure: {e}") from e

        if txn is None or txn.user_id != user_id:
            return None
        return txn
