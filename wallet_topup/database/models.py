"""SQLAlchemy database models for wallet top-ups."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
EventIdType = BigInteger().with_variant(Integer(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class GatewayTransactionModel(Base):
    """
    Gateway transactions table.

    One row per top-up. The idempotency key and the gateway-facing transaction
    reference are each unique.
    """

    __tablename__ = "gateway_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    bill_ref_id: Mapped[str] = mapped_column(String(64), nullable=False)
    txn_ref_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    polling_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('PENDING', 'SUCCESS', 'FAILED', 'UNKNOWN')",
            name="valid_status",
        ),
        CheckConstraint("payment_method IN ('MWALLET', 'CARD')", name="valid_payment_method"),
        Index("idx_gateway_transactions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of GatewayTransactionModel."""
        return (
            f"<GatewayTransaction(txn_ref_no={self.txn_ref_no}, "
            f"amount={self.amount}, status={self.status})>"
        )


class GatewayTransactionEvent(Base):
    """
    Gateway transaction audit trail.

    Append-only. Gateway payloads are stored only after their hash verified.
    """

    __tablename__ = "gateway_transaction_events"

    id: Mapped[int] = mapped_column(EventIdType, primary_key=True, autoincrement=True)
    txn_ref_no: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_gateway_transaction_events_txn_ref", "txn_ref_no"),
        Index("idx_gateway_transaction_events_type", "event_type"),
    )

    def __repr__(self) -> str:
        """String representation of GatewayTransactionEvent."""
        return (
            f"<GatewayTransactionEvent(id={self.id}, txn_ref_no={self.txn_ref_no}, "
            f"type={self.event_type})>"
        )


class IdempotencyLock(Base):
    """
    Row-lock anchors for idempotency keys.

    On PostgreSQL a unit of work holds ``SELECT ... FOR UPDATE`` on its key's
    row until commit, serializing the same key across processes.
    """

    __tablename__ = "idempotency_locks"

    idempotency_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
