"""
Domain records for wallet top-ups.

These are plain dataclasses shared by the orchestrator, the polling supervisor
and the persistence adapter.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from wallet_topup.integrations.response_codes import GatewayStatus


class PaymentMethod(str, Enum):
    """How the user pays."""

    WALLET = "MWALLET"
    CARD = "CARD"


class TransactionStatus(str, Enum):
    """Stored transaction status."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_gateway(cls, status: GatewayStatus) -> "TransactionStatus":
        return cls(status.value)

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.SUCCESS, TransactionStatus.FAILED)

    @property
    def client_visible(self) -> "TransactionStatus":
        """Unknown is reported to clients as Pending."""
        if self is TransactionStatus.UNKNOWN:
            return TransactionStatus.PENDING
        return self


# target status -> statuses it may be written over
ALLOWED_SOURCES: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(),
    TransactionStatus.UNKNOWN: frozenset({TransactionStatus.PENDING}),
    TransactionStatus.SUCCESS: frozenset({TransactionStatus.PENDING, TransactionStatus.UNKNOWN}),
    TransactionStatus.FAILED: frozenset({TransactionStatus.PENDING, TransactionStatus.UNKNOWN}),
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    """Whether ``current`` may be overwritten with ``target``."""
    return current in ALLOWED_SOURCES[target]


@dataclass(frozen=True)
class TopUpRequest:
    """Client top-up request."""

    idempotency_key: str
    amount: int
    method: PaymentMethod
    phone_number: Optional[str] = None
    cnic_last6: Optional[str] = None


@dataclass(frozen=True)
class RedirectPayload:
    """Signed form for the hosted card page."""

    post_url: str
    fields: Dict[str, str]
    return_url: str


@dataclass(frozen=True)
class TopUpResult:
    """Client-visible outcome of a top-up."""

    id: uuid.UUID
    txn_ref_no: str
    status: TransactionStatus
    message: str
    amount: int
    redirect: Optional[RedirectPayload] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": str(self.id),
            "txn_ref_no": self.txn_ref_no,
            "status": self.status.value,
            "message": self.message,
            "amount": self.amount,
        }
        if self.redirect is not None:
            data["redirect"] = {
                "post_url": self.redirect.post_url,
                "fields": dict(self.redirect.fields),
                "return_url": self.redirect.return_url,
            }
        return data


@dataclass(frozen=True)
class NewTransaction:
    """Values for a transaction about to be created."""

    user_id: str
    idempotency_key: str
    bill_ref_id: str
    txn_ref_no: str
    method: PaymentMethod
    amount: int
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class GatewayTransaction:
    """A stored top-up transaction."""

    id: uuid.UUID
    user_id: str
    idempotency_key: str
    bill_ref_id: str
    txn_ref_no: str
    method: PaymentMethod
    amount: int
    status: TransactionStatus
    polling_active: bool
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "bill_ref_id": self.bill_ref_id,
            "txn_ref_no": self.txn_ref_no,
            "method": self.method.value,
            "amount": self.amount,
            "status": self.status.value,
            "polling_active": self.polling_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
