"""
Logging Configuration for the Movie Catalog Warehouse

Structured logging with structlog rendered through the stdlib logging
handlers, as JSON or as human-readable console output. Every event carries
the service name, environment and version so that loader logs from several
hosts can be told apart once shipped.

The loader runs standalone and inside Prefect flows. Prefect installs its
own root handlers, so only the handler installed here is ever replaced.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from movie_warehouse.config.settings import Settings, get_settings

# Set on the handler installed by configure_logging
HANDLER_MARKER = "_movie_warehouse_handler"


def service_context(settings: Settings):
    """Processor adding the service identity to every event."""
    identity = {
        "service": settings.app_name,
        "environment": settings.app_env,
        "service_version": settings.version,
    }

    def add_service_context(logger, method_name, event_dict):
        for key, value in identity.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def warehouse_handlers(root_logger: logging.Logger) -> list:
    """Handlers previously installed by configure_logging."""
    return [h for h in root_logger.handlers if getattr(h, HANDLER_MARKER, False)]


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Safe to call more than once; the previous warehouse handler is replaced.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override the renderer, "json" or "text"
    """
    settings = get_settings()
    level = log_level or settings.monitoring.log_level
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    fmt = (log_format or settings.monitoring.log_format).lower()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        service_context(settings),
        TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if fmt == "json":
        renderer = JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    formatter = ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in warehouse_handlers(root_logger):
        root_logger.removeHandler(handler)

    # stderr keeps stdout clean for the load report
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    setattr(console_handler, HANDLER_MARKER, True)
    root_logger.addHandler(console_handler)

    # Pydantic and SQLAlchemy deprecation warnings go through the same pipeline
    logging.captureWarnings(True)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    log = structlog.get_logger(__name__)
    log.info("Logging configured", level=level, format=fmt)
