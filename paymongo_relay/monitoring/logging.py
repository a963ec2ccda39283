"""
Structured logging configuration.

Uses structlog for JSON-formatted logs with request IDs. Customer email and
mobile values are masked and Decimal amounts are rendered as plain strings
before events reach the renderer.
"""
import logging
import sys
from decimal import Decimal
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from paymongo_relay.config import get_settings

PERSONAL_DATA_FIELDS = ("email", "mobile")
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Add application context to log events.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary

    Returns:
        dict[str, Any]: Enhanced event dictionary
    """
    settings = get_settings()
    event_dict["app_name"] = settings.app_name
    event_dict["app_env"] = settings.app_env
    event_dict["paymongo_mode"] = "test" if settings.is_test_mode else "live"
    return event_dict


def mask_personal_data(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask customer email and mobile fields wherever an event carries them."""
    # Imported here: paymongo_relay.core imports integrations, which import monitoring.
    from paymongo_relay.core.validation import mask_sensitive

    return mask_sensitive(event_dict, PERSONAL_DATA_FIELDS)


def render_decimals(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Render Decimal amounts as strings so ``5500.50`` keeps its trailing zero."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def _configure_stdlib_logging(log_level: str) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={
                "timestamp": "@timestamp",
                "level": "level",
                "name": "logger",
                "message": "message",
            },
        )
    )
    root_logger.addHandler(json_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging() -> None:
    """
    Configure structured logging with JSON formatter.

    Sets up:
    - JSON-formatted logs on stdout
    - Request ID tracking via contextvars
    - Personal data masking
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            mask_personal_data,
            render_decimals,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configure_stdlib_logging(settings.log_level)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
