"""
API routes for wallet top-ups.
"""
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from wallet_topup.core.models import TopUpRequest
from wallet_topup.core.payment_orchestrator import (
    PaymentError,
    PaymentOrchestrator,
    PaymentValidationError,
)
from wallet_topup.integrations.jazzcash_client import GatewayError
from wallet_topup.monitoring.health import HealthCheck

from .dependencies import get_current_user_id, get_health_check, get_orchestrator
from .schemas import (
    HealthCheckResponse,
    TopUpRequestSchema,
    TopUpResponse,
    TransactionStatusResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(prefix="/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])


@payment_router.post(
    "/topup",
    response_model=TopUpResponse,
    summary="Top up wallet",
    description="Initiate a JazzCash top-up; a repeated idempotency key returns its transaction",
)
async def topup(
    request: TopUpRequestSchema,
    user_id: str = Depends(get_current_user_id),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Initiate a wallet top-up.

    This endpoint is idempotent - duplicate requests return the same transaction.
    """
    logger.info(
        "api_topup_request",
        user_id=user_id,
        idempotency_key=str(request.idempotency_key),
        method=request.method.value,
        amount=request.amount,
    )

    try:
        result = await orchestrator.initiate(
            TopUpRequest(
                idempotency_key=str(request.idempotency_key),
                amount=request.amount,
                method=request.method,
                phone_number=request.phone_number,
                cnic_last6=request.cnic_last6,
            ),
            user_id,
        )

    except PaymentValidationError as e:
        logger.warning("api_topup_validation_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except GatewayError as e:
        logger.error("api_topup_gateway_error", operation=e.operation, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment gateway is unavailable. Please try again.",
        )

    except PaymentError as e:
        logger.error("api_topup_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Top-up could not be processed. Please try again.",
        )

    logger.info(
        "api_topup_success",
        txn_ref_no=result.txn_ref_no,
        status=result.status.value,
    )
    return result.to_dict()


@payment_router.get(
    "/{txn_ref_no}",
    response_model=TransactionStatusResponse,
    summary="Get transaction status",
    description="Retrieve a stored top-up transaction owned by the caller",
)
async def get_transaction_status(
    txn_ref_no: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Get transaction status by reference."""
    try:
        txn = await orchestrator.get_transaction(txn_ref_no, user_id)
    except PaymentError as e:
        logger.error("api_get_transaction_error", txn_ref_no=txn_ref_no, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve transaction status",
        )

    if txn is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")

    data = txn.to_dict()
    data["status"] = txn.status.client_visible.value
    return data


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,  # Don't include in OpenAPI docs
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
