"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from wallet_topup.core.models import PaymentMethod


class TopUpRequestSchema(BaseModel):
    """Request schema for a wallet top-up."""

    idempotency_key: UUID = Field(..., description="Client-generated key; retries reuse it")
    amount: int = Field(..., description="Amount in the smallest currency unit (paisa)")
    method: PaymentMethod = Field(..., description="MWALLET or CARD")
    phone_number: Optional[str] = Field(
        default=None, description="JazzCash mobile number (MWALLET only)"
    )
    cnic_last6: Optional[str] = Field(
        default=None, description="CNIC or its last 6 digits (MWALLET only)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "idempotency_key": "123e4567-e89b-12d3-a456-426614174000",
                    "amount": 50000,
                    "method": "MWALLET",
                    "phone_number": "03001234567",
                    "cnic_last6": "345678",
                }
            ]
        }
    }


class RedirectSchema(BaseModel):
    """Signed form the browser posts to the hosted card page."""

    post_url: str = Field(..., description="JazzCash card page URL")
    fields: Dict[str, str] = Field(..., description="Signed pp_* fields, including pp_SecureHash")
    return_url: str = Field(..., description="Merchant return URL")


class TopUpResponse(BaseModel):
    """Response schema for a top-up."""

    id: str = Field(..., description="Transaction ID")
    txn_ref_no: str = Field(..., description="Gateway-facing transaction reference")
    status: str = Field(..., description="PENDING, SUCCESS or FAILED")
    message: str = Field(..., description="User-facing message")
    amount: int = Field(..., description="Amount in paisa")
    redirect: Optional[RedirectSchema] = Field(
        default=None, description="Card redirect payload (CARD only)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "123e4567-e89b-12d3-a456-426614174000",
                    "txn_ref_no": "GIKITU20250106K7P",
                    "status": "PENDING",
                    "message": "Transaction is pending. Please wait for confirmation",
                    "amount": 50000,
                }
            ]
        }
    }


class TransactionStatusResponse(BaseModel):
    """Response schema for a stored transaction."""

    id: str = Field(..., description="Transaction ID")
    txn_ref_no: str = Field(..., description="Gateway-facing transaction reference")
    bill_ref_id: str = Field(..., description="Bill reference")
    method: str = Field(..., description="MWALLET or CARD")
    amount: int = Field(..., description="Amount in paisa")
    status: str = Field(..., description="PENDING, SUCCESS or FAILED")
    polling_active: bool = Field(..., description="Whether a reconciliation loop is running")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601)")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
