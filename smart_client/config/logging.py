"""
Structured logging for the SMART on FHIR client.

The library only emits through structlog; applications opt in to rendering
with ``configure_logging``. Each authorization attempt binds a ``flow_id``
to the structlog context so its log lines can be correlated.
"""

import logging
import sys
import uuid

import structlog

from smart_client.config.settings import get_settings

# Library loggers kept at WARNING once logging is configured
SUPPRESSED_LOGGERS = ("aiohttp", "aiohttp.access", "asyncio", "redis")

SECRET_VISIBLE_CHARS = 6


def set_flow_id(flow_id: str | None = None) -> str:
    """Bind a flow ID to the logging context. Generates one if not provided."""
    new_id = flow_id or uuid.uuid4().hex[:8]
    structlog.contextvars.bind_contextvars(flow_id=new_id)
    return new_id


def truncate_secret(value: str | None) -> str:
    """Shorten a token, code or state value so it can be logged safely."""
    if not value:
        return ""
    if len(value) <= SECRET_VISIBLE_CHARS:
        return "***"
    return value[:SECRET_VISIBLE_CHARS] + "..."


def configure_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """
    Configure structlog rendering for applications using the client.

    Args:
        level: Log level (uses ``SMART_CLIENT_LOG_LEVEL`` if not provided)
        json_format: JSON output if True, console otherwise (uses ``SMART_CLIENT_LOG_JSON`` if not provided)
    """
    settings = get_settings()
    level = level or settings.log_level
    json_format = settings.log_json if json_format is None else json_format

    renderer = structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    for logger_name in SUPPRESSED_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
