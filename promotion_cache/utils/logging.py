"""
Structured logging for the promotion cache.

Every record carries the service name; rebuild cycles additionally
carry their epoch and trigger so one cycle can be followed across
the coordinator and its workers.
"""

import logging
import sys
from typing import List, Optional
import structlog
from structlog.stdlib import LoggerFactory

from .errors import ConfigurationError


LOG_FORMATS = ("json", "console")


def _resolve_level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ConfigurationError(
            f"Unknown log level: {log_level}",
            config_key="log_level",
            config_value=log_level,
        )
    return level


def _processors(format_type: str) -> List:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging(
    service_name: str,
    log_level: str = "info",
    format_type: str = "json"
) -> None:
    """
    Configure stdlib logging and structlog for the service.

    Args:
        service_name: Value bound as ``service`` on every record
        log_level: Logging level (debug, info, warning, error)
        format_type: Output format (json, console)
    """
    if format_type not in LOG_FORMATS:
        raise ConfigurationError(
            f"Unknown log format: {format_type}",
            config_key="log_format",
            config_value=format_type,
        )
    level = _resolve_level(log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=_processors(format_type),
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_rebuild_context(logger: structlog.BoundLogger, epoch: int, trigger: str) -> structlog.BoundLogger:
    """Tag a logger with the rebuild cycle it reports on."""
    return logger.bind(epoch=epoch, trigger=trigger)
