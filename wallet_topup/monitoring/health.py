"""
Health checks for liveness/readiness probes.

Checks:
- Database connectivity
- JazzCash gateway configuration
- Polling capacity (informational)
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet_topup.config import Settings, get_settings
from wallet_topup.core.rate_limiter import RateLimiter
from wallet_topup.database.connection import get_session_factory
from wallet_topup.workers.polling_supervisor import PollingSupervisor

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        supervisor: Optional[PollingSupervisor] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """Initialize health check service."""
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self.rate_limiter = rate_limiter
        self.supervisor = supervisor

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = self._session_factory or get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()

                return {
                    "status": "healthy",
                    "service": "database",
                    "message": "Database connection successful",
                }

        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}") from e

    async def check_gateway(self) -> Dict[str, Any]:
        """
        Check that the JazzCash endpoints and credentials are configured.

        Raises:
            HealthCheckError: If a required value is missing
        """
        required = {
            "merchant_id": self.settings.jazzcash_merchant_id,
            "integrity_salt": self.settings.jazzcash_integrity_salt,
            "wallet_payment_url": self.settings.jazzcash_wallet_payment_url,
            "status_inquiry_url": self.settings.jazzcash_status_inquiry_url,
        }
        missing = sorted(name for name, value in required.items() if not value)
        if missing:
            logger.error("gateway_health_check_failed", missing=missing)
            raise HealthCheckError(f"Gateway configuration incomplete: {', '.join(missing)}")

        return {
            "status": "healthy",
            "service": "jazzcash",
            "message": "Gateway configured",
            "sandbox": self.settings.is_sandbox,
        }

    def polling_status(self) -> Dict[str, Any]:
        """Report rate limiter occupancy and running polling loops."""
        status: Dict[str, Any] = {"status": "healthy", "service": "polling"}
        if self.rate_limiter is not None:
            status["rate_limiter_capacity"] = self.rate_limiter.capacity
            status["rate_limiter_in_use"] = self.rate_limiter.in_use
        if self.supervisor is not None:
            status["active_loops"] = len(self.supervisor.active_references)
        return status

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks: Dict[str, Any] = {}
        all_healthy = True

        # Database check
        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            all_healthy = False

        # Gateway check
        try:
            checks["jazzcash"] = await self.check_gateway()
        except HealthCheckError as e:
            checks["jazzcash"] = {
                "status": "unhealthy",
                "service": "jazzcash",
                "error": str(e),
            }
            all_healthy = False

        checks["polling"] = self.polling_status()

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe; verifies all dependencies."""
        return await self.check_all()
