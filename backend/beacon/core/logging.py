"""
Structured logging configuration with structlog.

JSON lines in production, console rendering elsewhere. Client attributes
that feed the visitor hash are masked before rendering so raw IPs and
user agents never reach the log stream.
"""
import logging
import sys
from typing import Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from beacon.core.config import settings

# Keys that may carry client identifiers
REDACTED_KEYS = frozenset({"ip", "client_ip", "user_agent", "x_forwarded_for"})


def redact_client_fields(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "[redacted]"
    return event_dict


def add_service_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.environment)
    return event_dict


def configure_logging(json_logs: Optional[bool] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        json_logs: Force JSON output; defaults to True in production only
    """
    if json_logs is None:
        json_logs = settings.environment == "production"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        redact_client_fields,
    ]

    if json_logs:
        processors: list[Processor] = [
            *shared_processors,
            add_service_context,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    for noisy in ("uvicorn.access", "httpx", "arq.worker"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
