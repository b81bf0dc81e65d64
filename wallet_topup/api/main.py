"""
Main FastAPI application.

Wallet top-up API with:
- Service wiring in the lifespan (store, gateway client, rate limiter,
  polling supervisor, orchestrator)
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wallet_topup.config import get_settings
from wallet_topup.core.payment_orchestrator import PaymentOrchestrator
from wallet_topup.core.rate_limiter import RateLimiter
from wallet_topup.database.connection import close_db, get_engine, get_session_factory, init_db
from wallet_topup.database.repository import SqlTransactionStore
from wallet_topup.integrations.jazzcash_client import JazzCashClient
from wallet_topup.monitoring.health import HealthCheck
from wallet_topup.monitoring.logging import setup_logging
from wallet_topup.workers.polling_supervisor import PollingSupervisor

from .routes import monitoring_router, payment_router

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        sandbox=settings.is_sandbox,
    )

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    session_factory = get_session_factory()
    store = SqlTransactionStore(get_engine(), session_factory)
    gateway = JazzCashClient(settings)
    rate_limiter = RateLimiter(settings.gateway_max_concurrent_inquiries)
    supervisor = PollingSupervisor(
        gateway,
        store,
        rate_limiter,
        interval_seconds=settings.polling_interval_seconds,
        deadline_seconds=settings.polling_deadline_seconds,
    )

    app.state.orchestrator = PaymentOrchestrator(gateway, store, supervisor, settings=settings)
    app.state.supervisor = supervisor
    app.state.health_check = HealthCheck(session_factory, rate_limiter, supervisor, settings)

    yield

    # Shutdown
    logger.info("application_shutdown")
    await supervisor.shutdown()
    await gateway.aclose()
    try:
        await close_db()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


# Create FastAPI application
app = FastAPI(
    title="Wallet Top-Up Service",
    description=(
        "JazzCash wallet top-ups with idempotent initiation, signed gateway exchanges "
        "and bounded background reconciliation."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information and structured logging context.
    """
    request_id = str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        duration = time.time() - start_time
        logger.info(
            "request_completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_seconds=duration,
        )

        return response

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            "request_failed",
            request_id=request_id,
            error=str(e),
            duration_seconds=duration,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


# Include routers
app.include_router(payment_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.app_env,
        "sandbox": settings.is_sandbox,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "wallet_topup.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )
