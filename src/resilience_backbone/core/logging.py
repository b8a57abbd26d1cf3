"""Logging configuration for the resilience backbone."""

import logging
import sys
from typing import Any, Optional, Protocol, Union

import structlog

from resilience_backbone.core.config import Settings, get_settings


class StructuredLogger(Protocol):
    """Logging collaborator injected into the bus and breakers."""

    def debug(self, event: str, **meta: Any) -> Any: ...

    def info(self, event: str, **meta: Any) -> Any: ...

    def warning(self, event: str, **meta: Any) -> Any: ...

    def error(self, event: str, **meta: Any) -> Any: ...


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Setup structured logging for the application."""
    settings = settings or get_settings()

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _get_renderer(settings),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper()),
    )


def _get_renderer(settings: Settings) -> Union[structlog.processors.JSONRenderer, structlog.dev.ConsoleRenderer]:
    """Get the appropriate log renderer based on configuration."""
    if settings.LOG_FORMAT.lower() == "json":
        return structlog.processors.JSONRenderer()
    else:
        return structlog.dev.ConsoleRenderer(colors=True)


def get_logger(name: str, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance, optionally bound to context values."""
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger
