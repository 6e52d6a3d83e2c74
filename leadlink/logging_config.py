"""
Structured logging for Lead Linker.

structlog on top of stdlib logging: JSON lines in production, colored
console output when DEBUG is on. Lead phone numbers are masked before a
record is rendered.
"""

import logging
import sys
from typing import Any, Optional
import structlog
from leadlink.config import config

# Event keys that may carry a raw phone number
PHONE_FIELDS = frozenset({"phone", "lead_phone", "payload_phone"})

_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "sqlalchemy.engine")


def mask_phone(value: Any) -> Any:
    """Keep the last 4 digits of a phone-like string."""
    if not isinstance(value, str) or len(value) <= 4:
        return value
    return "*" * (len(value) - 4) + value[-4:]


def mask_phone_fields(_logger, _method_name, event_dict: dict) -> dict:
    for key in PHONE_FIELDS.intersection(event_dict):
        event_dict[key] = mask_phone(event_dict[key])
    return event_dict


def configure_logging(level: Optional[str] = None, debug: Optional[bool] = None):
    """
    Configure stdlib logging and structlog.

    Defaults come from config; tests and scripts may pass explicit values.
    """
    level = (level or config.LOG_LEVEL).upper()
    debug = config.DEBUG if debug is None else debug

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        mask_phone_fields,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        # Cyrillic names stay readable in the JSON output
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("lead_linked", lead_id="...", score=100)
    """
    return structlog.get_logger(name)


def bind_lead_context(lead_id: str):
    """Attach lead_id to every record logged until the context is cleared."""
    return structlog.contextvars.bound_contextvars(lead_id=lead_id)


configure_logging()

logger = get_logger("leadlink")
