"""Top-up orchestration, reconciliation and shared primitives."""
from .idempotency import KeyedLock
from .models import (
    GatewayTransaction,
    NewTransaction,
    PaymentMethod,
    RedirectPayload,
    TopUpRequest,
    TopUpResult,
    TransactionStatus,
)
from .payment_orchestrator import (
    PaymentError,
    PaymentOrchestrator,
    PaymentStoreError,
    PaymentValidationError,
)
from .rate_limiter import RateLimiter
from .reconciliation import Reconciler
from .store import StoreError, TransactionStore, TransactionUnitOfWork

__all__ = [
    "GatewayTransaction",
    "KeyedLock",
    "NewTransaction",
    "PaymentError",
    "PaymentMethod",
    "PaymentOrchestrator",
    "PaymentStoreError",
    "PaymentValidationError",
    "RateLimiter",
    "Reconciler",
    "RedirectPayload",
    "StoreError",
    "TopUpRequest",
    "TopUpResult",
    "TransactionStatus",
    "TransactionStore",
    "TransactionUnitOfWork",
]
