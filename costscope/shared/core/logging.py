import sys
import structlog
import logging
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID
from costscope.shared.core.config import get_settings

def value_stringifier(logger, method_name, event_dict):
    """
    Render Decimal, UUID, date and Enum values as plain strings.
    Keeps money values exact in JSON output instead of lossy floats.
    """
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (Decimal, UUID, date)):
            event_dict[key] = str(value)
    return event_dict

def setup_logging():
    settings = get_settings()

    # 1. Choose the renderer based on environment
    if settings.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        min_level = logging.INFO

    # 2. Configure the processor pipeline
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        value_stringifier,
        renderer
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # 3. Route stdlib logging (sqlalchemy, aiosqlite) through the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=min_level,
    )


def audit_log(event: str, actor: str, account_id: str, details: dict = None):
    """
    Standardized helper for lifecycle changes on derived findings.
    Enforces a consistent schema for downstream audit ingestion.
    """
    logger = structlog.get_logger("audit")
    logger.info(
        "audit_event",
        event=event,
        actor=str(actor),
        account_id=str(account_id),
        metadata=details or {},
    )
