"""
Structured logging for the top-up service.

Gateway field sets carry the merchant password and the signature, and the
settings carry the integrity salt. ``redact_gateway_secrets`` masks them in
every event before it is rendered, including inside nested ``fields`` and
``response`` payloads.
"""
import logging
import sys
from typing import Any, Mapping

import structlog
from pythonjsonlogger import jsonlogger

from wallet_topup.config import get_settings

REDACTED = "***"
SECRET_KEYS = frozenset(
    key.lower()
    for key in (
        "pp_Password",
        "pp_SecureHash",
        "integrity_salt",
        "jazzcash_password",
        "jazzcash_integrity_salt",
    )
)


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in SECRET_KEYS else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


def redact_gateway_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask merchant credentials and signatures anywhere in the event."""
    return _redact(event_dict)


def add_service_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Tag events with the service name, environment and gateway mode."""
    settings = get_settings()
    event_dict["app_name"] = settings.app_name
    event_dict["app_env"] = settings.app_env
    event_dict["gateway"] = "sandbox" if settings.is_sandbox else "live"
    return event_dict


def setup_logging() -> None:
    """Configure structlog and the stdlib root handler for JSON output."""
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            add_service_context,
            redact_gateway_secrets,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(settings.log_level)

    # Quiet client and driver loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        gateway="sandbox" if settings.is_sandbox else "live",
    )
