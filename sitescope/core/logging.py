"""
Structured logging using structlog.

Every record carries the service name and version so worker and API logs can
be told apart once shipped. JSON in production, colored console otherwise.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from sitescope.core.config import get_settings

SEVERITY = {
    "debug": "DEBUG",
    "info": "INFO",
    "warning": "WARNING",
    "error": "ERROR",
    "critical": "CRITICAL",
}

# Library loggers and the level they are held at
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}
QUIET_LOGGERS_PRODUCTION = {
    "asyncio": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.WARNING,
    "kombu": logging.WARNING,
}

_configured = False


def add_severity(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    """GCP/Datadog style severity next to structlog's level."""
    event_dict["severity"] = SEVERITY.get(method, "INFO")
    return event_dict


def add_service(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    settings = get_settings()
    event_dict.setdefault("service", "sitescope")
    event_dict.setdefault("version", settings.APP_VERSION)
    return event_dict


def _renderer(log_format: str) -> list[Processor]:
    if log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging(force: bool = False) -> None:
    """
    Configure structlog and stdlib logging once per process.

    Called from the API lifespan and from the Celery logger signal; later
    calls are no-ops unless `force` is set.
    """
    global _configured
    if _configured and not force:
        return

    settings = get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_severity,
        add_service,
        *_renderer(settings.LOG_FORMAT),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    quiet = dict(QUIET_LOGGERS)
    if settings.ENV == "production":
        quiet.update(QUIET_LOGGERS_PRODUCTION)
    for name, level in quiet.items():
        logging.getLogger(name).setLevel(level)

    _configured = True
