"""FastAPI dependencies for services wired in the application lifespan."""
from fastapi import HTTPException, Request, status

from wallet_topup.core.payment_orchestrator import PaymentOrchestrator
from wallet_topup.monitoring.health import HealthCheck


def get_current_user_id(request: Request) -> str:
    """
    Authenticated caller ID.

    Upstream authentication middleware places it on ``request.state.user_id``.
    """
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return str(user_id)


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check
